from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from maestro_crm.schemas.common import CamelModel


class SessionContext(CamelModel):
    """The signed-in user on whose behalf an operation runs."""

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return self.display_name or self.email or self.uid
