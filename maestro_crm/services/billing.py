from __future__ import annotations

import logging

from maestro_crm.schemas.billing import CollectionsResponse, InvoiceableResponse, ReminderResponse
from maestro_crm.schemas.service_request import PaymentStatus, ServiceRequest, ServiceStatus
from maestro_crm.services import messages
from maestro_crm.services.document_store import (
    MAIL,
    SERVICE_REQUESTS,
    DocumentStore,
    FieldFilter,
    load_document,
)
from maestro_crm.services.exceptions import PreconditionError, ValidationError

logger = logging.getLogger(__name__)


class BillingService:
    """Collections and invoicing views over completed service requests."""

    def __init__(self, store: DocumentStore, *, brand_name: str = "MaestroYa") -> None:
        self._store = store
        self._brand_name = brand_name

    async def to_collect(self) -> CollectionsResponse:
        snapshots = await self._store.query_documents(
            SERVICE_REQUESTS,
            [
                FieldFilter(
                    "paymentStatus",
                    "in",
                    [PaymentStatus.PENDING.value, PaymentStatus.PARTIALLY_PAID.value],
                ),
                FieldFilter("remainingBalance", ">", 0),
            ],
            order_by="completedAt",
            descending=True,
        )
        items = [load_document(ServiceRequest, snap) for snap in snapshots]
        outstanding = sum(item.remaining_balance or 0 for item in items)
        logger.info("%s service requests pending collection (%.2f)", len(items), outstanding)
        return CollectionsResponse(total=len(items), total_outstanding=outstanding, items=items)

    async def to_invoice(self) -> InvoiceableResponse:
        snapshots = await self._store.query_documents(
            SERVICE_REQUESTS,
            [
                FieldFilter("status", "==", ServiceStatus.COMPLETED.value),
                FieldFilter("paymentStatus", "==", PaymentStatus.PAID.value),
            ],
            order_by="completedAt",
            descending=True,
        )
        items = [load_document(ServiceRequest, snap) for snap in snapshots]
        return InvoiceableResponse(total=len(items), items=items)

    async def send_payment_reminder(self, service_id: str) -> ReminderResponse:
        snapshot = await self._store.get_document(SERVICE_REQUESTS, service_id)
        service = load_document(ServiceRequest, snapshot)
        if not service.customer_email:
            raise ValidationError("Este cliente no tiene un email registrado.")
        if not service.remaining_balance or service.remaining_balance <= 0:
            raise PreconditionError("El servicio no tiene saldo pendiente.")

        mail = messages.payment_reminder(service, brand_name=self._brand_name)
        mail_id = await self._store.append(MAIL, mail.to_document())
        logger.info("Payment reminder %s queued for service request %s", mail_id, service_id)
        return ReminderResponse(service_request_id=service_id, mail_id=mail_id, to=mail.to)
