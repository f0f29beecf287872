from __future__ import annotations

from typing import List, Optional

from maestro_crm.schemas.common import CamelModel, DocumentModel


class MailMessage(CamelModel):
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None


class MailRecord(DocumentModel):
    to: List[str]
    message: MailMessage

    def to_document(self):
        # the mail trigger rejects null bodies, so unset parts are omitted
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
