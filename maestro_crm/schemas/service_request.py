from __future__ import annotations

from datetime import date
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


class ServiceStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    EN_RUTA = "en_ruta"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CustomerOrigin(str, Enum):
    WEB = "Web"
    WHATSAPP = "WhatsApp"
    CALL = "Llamada"
    EMAIL = "Email"
    REFERRAL = "Referido"
    OTHER = "Otro"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"


class Payment(CamelModel):
    amount: float
    method: PaymentMethod
    paid_at: Timestamp
    registered_by: str
    notes: Optional[str] = ""


class ServiceRequest(DocumentModel):
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_origin: CustomerOrigin = CustomerOrigin.OTHER
    customer_id: str = ""
    service_type: str
    location: str
    problem_description: str
    urgency: Urgency = Urgency.MEDIUM
    status: ServiceStatus = ServiceStatus.PENDING
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Optional[Timestamp] = None
    scheduled_at: Optional[Timestamp] = None
    started_at: Optional[Timestamp] = None
    completed_at: Optional[Timestamp] = None
    technician_id: Optional[str] = None
    quote_id: Optional[str] = None
    completion_notes: Optional[str] = None
    hours_worked: Optional[float] = None
    evidence_photos: List[str] = Field(default_factory=list)
    total_amount: Optional[float] = None
    advance_payment: Optional[float] = None
    remaining_balance: Optional[float] = None
    payment_status: Optional[PaymentStatus] = None
    warranty_days: Optional[int] = None
    warranty_expires_at: Optional[Timestamp] = None
    payments: List[Payment] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)


class ServiceRequestCreate(CamelModel):
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_origin: str = CustomerOrigin.CALL.value
    service_type: str
    location: str
    problem_description: str
    urgency: str = Urgency.MEDIUM.value


class ScheduleRequest(CamelModel):
    scheduled_date: Optional[date] = None
    scheduled_time: str = "09:00"
    notes: Optional[str] = None


class CompletionReport(CamelModel):
    notes: str = ""
    hours_worked: Optional[float] = None
    evidence_photos: List[str] = Field(default_factory=list)


class PaymentRequest(CamelModel):
    amount: float
    method: str = PaymentMethod.CASH.value
    paid_at: Optional[Timestamp] = None
    notes: Optional[str] = None


class ServiceRequestListResponse(CamelModel):
    total: int
    items: List[ServiceRequest]


class DeletionResponse(CamelModel):
    status: str = "deleted"
    id: str
    deleted_quote_ids: List[str] = Field(default_factory=list)
