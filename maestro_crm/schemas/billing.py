from __future__ import annotations

from typing import List, Optional

from maestro_crm.schemas.common import CamelModel
from maestro_crm.schemas.service_request import ServiceRequest


class CollectionsResponse(CamelModel):
    total: int
    total_outstanding: float
    items: List[ServiceRequest]


class InvoiceableResponse(CamelModel):
    total: int
    items: List[ServiceRequest]


class ReminderResponse(CamelModel):
    service_request_id: str
    mail_id: str
    to: List[str]


class ClosingMessageResponse(CamelModel):
    service_request_id: str
    message: str
    whatsapp_url: Optional[str] = None
