from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Any) -> Any:
    """Normalise the timestamp shapes found in stored documents to aware UTC."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds, as written by browser clients
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return to_utc(parsed)
    if isinstance(value, dict) and "seconds" in value:
        seconds = float(value["seconds"]) + float(value.get("nanoseconds", 0)) / 1e9
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


Timestamp = Annotated[datetime, BeforeValidator(to_utc)]


class CamelModel(BaseModel):
    """Base for every record exchanged with the store or the HTTP API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
    )


class DocumentModel(CamelModel):
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"})

    @classmethod
    def from_document(cls, document_id: str, data: Dict[str, Any]):
        return cls.model_validate({**data, "id": document_id})


class HistoryEntry(CamelModel):
    status: str
    timestamp: Timestamp = Field(default_factory=utc_now)
    actor_id: str
    notes: Optional[str] = None
