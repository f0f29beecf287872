from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import Field

from maestro_crm.schemas.common import (
    CamelModel,
    DocumentModel,
    HistoryEntry,
    Timestamp,
    utc_now,
)


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class QuoteItem(CamelModel):
    description: str
    quantity: float = 1
    price: float = 0.0


class QuoteTotals(CamelModel):
    subtotal: float
    vat_amount: float
    total_amount: float


class Quote(DocumentModel):
    service_request_id: str
    customer_name: str = ""
    customer_id: str = ""
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    service_address: str = ""
    service_type: Optional[str] = None
    urgency: Optional[str] = None
    problem_description: Optional[str] = None
    description: str = ""
    notes: Optional[str] = None
    items: List[QuoteItem] = Field(default_factory=list)
    subtotal: float = 0.0
    vat_percentage: float = 15.0
    vat_amount: float = 0.0
    discount_amount: float = 0.0
    total_amount: float = 0.0
    valid_until: Optional[Timestamp] = None
    technician_id: str = ""
    status: QuoteStatus = QuoteStatus.DRAFT
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Optional[Timestamp] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    generated_message: Optional[str] = None


class QuoteCreate(CamelModel):
    service_request_id: str
    description: Optional[str] = None
    items: List[QuoteItem]
    notes: Optional[str] = None
    vat_percentage: Optional[float] = None
    discount_amount: float = 0.0
    valid_until: Optional[Timestamp] = None


class QuoteItemsUpdate(CamelModel):
    items: List[QuoteItem]
    vat_percentage: Optional[float] = None
    discount_amount: Optional[float] = None
    valid_until: Optional[Timestamp] = None


class QuoteListResponse(CamelModel):
    total: int
    items: List[Quote]


class QuoteMessageResponse(CamelModel):
    quote_id: str
    message: str


class WhatsAppDispatchResponse(CamelModel):
    quote_id: Optional[str] = None
    service_request_id: Optional[str] = None
    url: str
    message: str
    status: str
