from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import List, Optional

from maestro_crm.schemas.common import HistoryEntry, utc_now
from maestro_crm.schemas.quote import (
    Quote,
    QuoteCreate,
    QuoteItem,
    QuoteItemsUpdate,
    QuoteListResponse,
    QuoteMessageResponse,
    QuoteStatus,
    WhatsAppDispatchResponse,
)
from maestro_crm.schemas.service_request import ServiceRequest
from maestro_crm.schemas.session import SessionContext
from maestro_crm.schemas.users import UserProfile
from maestro_crm.services import messages
from maestro_crm.services.assistant import AssistantService
from maestro_crm.services.document_store import (
    QUOTES,
    SERVICE_REQUESTS,
    USERS,
    ArrayUnion,
    DocumentStore,
    FieldFilter,
    Subscription,
    commit_batch,
    load_document,
)
from maestro_crm.services.exceptions import (
    DeletionNotAllowedError,
    OrphanQuoteError,
    ValidationError,
)
from maestro_crm.services.pricing import compute_quote_totals
from maestro_crm.services.workflow import (
    QUOTE_DELETABLE,
    QuoteAction,
    ServiceAction,
    next_quote_status,
    next_service_status,
)

logger = logging.getLogger(__name__)

MIN_ITEM_QUANTITY = 0.1


def _validate_pricing(
    items: List[QuoteItem], vat_percentage: float, discount_amount: float
) -> None:
    if not items:
        raise ValidationError("Debe agregar al menos un ítem a la cotización.")
    for item in items:
        if not item.description.strip():
            raise ValidationError("La descripción del ítem es requerida.")
        if not (math.isfinite(item.quantity) and math.isfinite(item.price)):
            raise ValidationError("Cantidad y precio deben ser números válidos.")
        if item.quantity < MIN_ITEM_QUANTITY:
            raise ValidationError(f"La cantidad debe ser al menos {MIN_ITEM_QUANTITY:g}.")
        if item.price < 0:
            raise ValidationError("El precio no puede ser negativo.")
    if not math.isfinite(vat_percentage) or not 0 <= vat_percentage <= 100:
        raise ValidationError("El IVA debe estar entre 0 y 100.")
    if not math.isfinite(discount_amount) or discount_amount < 0:
        raise ValidationError("El descuento no puede ser negativo.")


class QuoteService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        assistant: Optional[AssistantService] = None,
        default_vat_percentage: float = 15.0,
        validity_days: int = 15,
        whatsapp_country_code: str = "593",
    ) -> None:
        self._store = store
        self._assistant = assistant
        self._default_vat = default_vat_percentage
        self._validity_days = validity_days
        self._country_code = whatsapp_country_code

    async def get(self, quote_id: str) -> Quote:
        snapshot = await self._store.get_document(QUOTES, quote_id)
        return load_document(Quote, snapshot)

    async def list(
        self,
        *,
        service_request_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> QuoteListResponse:
        filters: List[FieldFilter] = []
        if service_request_id:
            filters.append(FieldFilter("serviceRequestId", "==", service_request_id))
        if status:
            filters.append(FieldFilter("status", "==", status))
        snapshots = await self._store.query_documents(
            QUOTES, filters, order_by="createdAt", descending=True
        )
        items = [load_document(Quote, snap) for snap in snapshots]
        return QuoteListResponse(total=len(items), items=items)

    def watch(self, quote_id: Optional[str] = None) -> Subscription:
        return self._store.subscribe(QUOTES, document_id=quote_id)

    async def create(self, request: QuoteCreate, session: SessionContext) -> Quote:
        vat_percentage = (
            self._default_vat if request.vat_percentage is None else request.vat_percentage
        )
        _validate_pricing(request.items, vat_percentage, request.discount_amount)

        service_snapshot = await self._store.get_document(
            SERVICE_REQUESTS, request.service_request_id
        )
        service = load_document(ServiceRequest, service_snapshot)

        totals = compute_quote_totals(request.items, vat_percentage, request.discount_amount)
        now = utc_now()
        quote = Quote(
            service_request_id=service.id,
            customer_name=service.customer_name,
            customer_id=service.customer_id,
            customer_phone=service.customer_phone,
            customer_email=service.customer_email,
            service_address=service.location,
            service_type=service.service_type,
            urgency=service.urgency,
            problem_description=service.problem_description,
            description=request.description or f"{service.service_type}: {service.problem_description}",
            notes=request.notes,
            items=request.items,
            subtotal=totals.subtotal,
            vat_percentage=vat_percentage,
            vat_amount=totals.vat_amount,
            discount_amount=request.discount_amount,
            total_amount=totals.total_amount,
            valid_until=request.valid_until or now + timedelta(days=self._validity_days),
            technician_id=session.uid,
            status=QuoteStatus.DRAFT,
            created_at=now,
            updated_at=now,
            history=[HistoryEntry(status=QuoteStatus.DRAFT.value, timestamp=now, actor_id=session.uid)],
        )
        quote.id = self._store.new_id(QUOTES)
        logger.info(
            "Creating quote %s for service request %s (total %.2f)",
            quote.id,
            service.id,
            quote.total_amount,
        )
        await commit_batch(
            self._store.batch().set(QUOTES, quote.id, quote.to_document()),
            f"creation of quote {quote.id}",
        )
        return quote

    async def update_items(
        self, quote_id: str, request: QuoteItemsUpdate, session: SessionContext
    ) -> Quote:
        quote = await self.get(quote_id)
        next_quote_status(quote.status, QuoteAction.EDIT)

        vat_percentage = (
            quote.vat_percentage if request.vat_percentage is None else request.vat_percentage
        )
        discount_amount = (
            quote.discount_amount if request.discount_amount is None else request.discount_amount
        )
        _validate_pricing(request.items, vat_percentage, discount_amount)
        totals = compute_quote_totals(request.items, vat_percentage, discount_amount)

        changes = {
            "items": [item.model_dump(by_alias=True) for item in request.items],
            "vatPercentage": vat_percentage,
            "discountAmount": discount_amount,
            "updatedAt": utc_now(),
            # cached text describes the old prices
            "generatedMessage": None,
            **totals.model_dump(by_alias=True),
        }
        if request.valid_until is not None:
            changes["validUntil"] = request.valid_until
        logger.info("User %s updated items of quote %s", session.uid, quote_id)
        await commit_batch(
            self._store.batch().update(QUOTES, quote_id, changes),
            f"item update of quote {quote_id}",
        )
        return await self.get(quote_id)

    async def _technician_name(self, technician_id: str) -> str:
        if not technician_id:
            return messages.NOT_SPECIFIED
        snapshot = await self._store.get_document(USERS, technician_id)
        if not snapshot.exists:
            return messages.NOT_SPECIFIED
        user = load_document(UserProfile, snapshot)
        return user.display_name or user.email or messages.NOT_SPECIFIED

    async def generate_message(self, quote_id: str) -> QuoteMessageResponse:
        quote = await self.get(quote_id)
        data = messages.quote_message_input(quote, await self._technician_name(quote.technician_id))
        if self._assistant is None:
            text = messages.render_quote_message(data)
        else:
            text = await self._assistant.generate_quote_message(data)
        await commit_batch(
            self._store.batch().update(
                QUOTES, quote_id, {"generatedMessage": text, "updatedAt": utc_now()}
            ),
            f"message cache of quote {quote_id}",
        )
        return QuoteMessageResponse(quote_id=quote_id, message=text)

    async def dispatch_whatsapp(
        self, quote_id: str, session: SessionContext
    ) -> WhatsAppDispatchResponse:
        """Build the customer WhatsApp link; the first dispatch marks a draft as sent."""

        quote = await self.get(quote_id)
        # refuse before the generated text is cached
        messages.whatsapp_number(quote.customer_phone, self._country_code)
        message = quote.generated_message
        if not message:
            message = (await self.generate_message(quote_id)).message
        url = messages.whatsapp_link(quote.customer_phone, message, self._country_code)

        status = quote.status
        if status == QuoteStatus.DRAFT.value:
            status = next_quote_status(quote.status, QuoteAction.SEND).value
            now = utc_now()
            entry = HistoryEntry(
                status=status,
                timestamp=now,
                actor_id=session.uid,
                notes="Cotización enviada por WhatsApp.",
            )
            await commit_batch(
                self._store.batch().update(
                    QUOTES,
                    quote_id,
                    {
                        "status": status,
                        "updatedAt": now,
                        "history": ArrayUnion([entry.model_dump(by_alias=True)]),
                    },
                ),
                f"dispatch of quote {quote_id}",
            )
            logger.info("Quote %s sent to customer", quote_id)
        return WhatsAppDispatchResponse(
            quote_id=quote_id,
            service_request_id=quote.service_request_id,
            url=url,
            message=message,
            status=status,
        )

    async def approve(self, quote_id: str, session: SessionContext) -> Quote:
        quote = await self.get(quote_id)
        new_status = next_quote_status(quote.status, QuoteAction.APPROVE)

        service_snapshot = await self._store.get_document(
            SERVICE_REQUESTS, quote.service_request_id
        )
        if not service_snapshot.exists:
            raise OrphanQuoteError(
                f"La solicitud de servicio {quote.service_request_id} de la cotización "
                f"{quote_id} no existe."
            )
        service = load_document(ServiceRequest, service_snapshot)
        service_status = next_service_status(service.status, ServiceAction.APPROVE_QUOTE)

        now = utc_now()
        quote_entry = HistoryEntry(
            status=new_status.value,
            timestamp=now,
            actor_id=session.uid,
            notes="Aprobada por el cliente.",
        )
        service_entry = HistoryEntry(
            status=service_status.value,
            timestamp=now,
            actor_id=session.uid,
            notes=f"Cotización {messages.short_id(quote_id)} aprobada.",
        )
        service_changes = {
            "status": service_status.value,
            "quoteId": quote_id,
            "updatedAt": now,
            "history": ArrayUnion([service_entry.model_dump(by_alias=True)]),
        }
        if not service.technician_id and quote.technician_id:
            service_changes["technicianId"] = quote.technician_id

        batch = (
            self._store.batch()
            .update(
                QUOTES,
                quote_id,
                {
                    "status": new_status.value,
                    "updatedAt": now,
                    "history": ArrayUnion([quote_entry.model_dump(by_alias=True)]),
                },
            )
            .update(SERVICE_REQUESTS, quote.service_request_id, service_changes)
        )
        logger.info(
            "Approving quote %s; service request %s becomes %s",
            quote_id,
            quote.service_request_id,
            service_status.value,
        )
        await commit_batch(batch, f"approval of quote {quote_id}")
        return await self.get(quote_id)

    async def reject(self, quote_id: str, session: SessionContext) -> Quote:
        return await self._close(quote_id, QuoteAction.REJECT, session, "Rechazada por el cliente.")

    async def expire(self, quote_id: str, session: SessionContext) -> Quote:
        return await self._close(quote_id, QuoteAction.EXPIRE, session, "Cotización vencida.")

    async def _close(
        self, quote_id: str, action: QuoteAction, session: SessionContext, note: str
    ) -> Quote:
        quote = await self.get(quote_id)
        new_status = next_quote_status(quote.status, action)
        now = utc_now()
        entry = HistoryEntry(status=new_status.value, timestamp=now, actor_id=session.uid, notes=note)
        logger.info("Quote %s is now %s", quote_id, new_status.value)
        await commit_batch(
            self._store.batch().update(
                QUOTES,
                quote_id,
                {
                    "status": new_status.value,
                    "updatedAt": now,
                    "history": ArrayUnion([entry.model_dump(by_alias=True)]),
                },
            ),
            f"{action.value} of quote {quote_id}",
        )
        return await self.get(quote_id)

    async def delete(self, quote_id: str, session: SessionContext) -> None:
        quote = await self.get(quote_id)
        if QuoteStatus(quote.status) not in QUOTE_DELETABLE:
            raise DeletionNotAllowedError(
                f"Solo se pueden eliminar cotizaciones en borrador, rechazadas o vencidas "
                f"(estado: {quote.status})."
            )
        logger.info("User %s deleting quote %s", session.uid, quote_id)
        await commit_batch(
            self._store.batch().delete(QUOTES, quote_id), f"deletion of quote {quote_id}"
        )
