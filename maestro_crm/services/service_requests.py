from __future__ import annotations

import logging
import math
import re
import time
from datetime import datetime, time as clock
from typing import List, Optional
from zoneinfo import ZoneInfo

from maestro_crm.schemas.assistant import (
    ServiceSummary,
    ServiceSummaryInput,
    ServiceTimePrediction,
    ServiceTimePredictionRequest,
)
from maestro_crm.schemas.billing import ClosingMessageResponse
from maestro_crm.schemas.common import HistoryEntry, utc_now
from maestro_crm.schemas.quote import Quote
from maestro_crm.schemas.service_request import (
    CompletionReport,
    CustomerOrigin,
    DeletionResponse,
    Payment,
    PaymentMethod,
    PaymentRequest,
    ScheduleRequest,
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestListResponse,
    ServiceStatus,
    Urgency,
)
from maestro_crm.schemas.session import SessionContext
from maestro_crm.schemas.users import UserProfile
from maestro_crm.services import messages
from maestro_crm.services.assistant import AssistantService
from maestro_crm.services.document_store import (
    MAIL,
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
    DeletionHasPaymentsError,
    DeletionNotAllowedError,
    MissingQuoteError,
    PreconditionError,
    ValidationError,
)
from maestro_crm.services.pricing import closing_fields, payment_status, remaining_balance
from maestro_crm.services.workflow import (
    SERVICE_DELETABLE,
    ServiceAction,
    next_service_status,
)

logger = logging.getLogger(__name__)

SERVICE_TYPES = ("Plomería", "Electricidad", "Albañilería", "Aire Acondicionado", "Otro")

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

START_WORK_NOTE = "El técnico ha iniciado el trabajo y está en ruta."
SCHEDULED_NOTE = "Servicio programado."
MAX_EVIDENCE_PHOTOS = 5


def _validate_intake(request: ServiceRequestCreate) -> None:
    if len(request.customer_name.strip()) < 2:
        raise ValidationError("El nombre debe tener al menos 2 caracteres.")
    if request.customer_email and not EMAIL_PATTERN.match(request.customer_email):
        raise ValidationError("Por favor, introduce un email válido.")
    if request.customer_phone and len(request.customer_phone) < 7:
        raise ValidationError("El teléfono debe tener al menos 7 dígitos.")
    if request.customer_origin not in {origin.value for origin in CustomerOrigin}:
        raise ValidationError(f"Origen de cliente no válido: {request.customer_origin}")
    if request.service_type not in SERVICE_TYPES:
        raise ValidationError(f"Tipo de servicio no válido: {request.service_type}")
    if len(request.location.strip()) < 5:
        raise ValidationError("La dirección es obligatoria.")
    if len(request.problem_description.strip()) < 10:
        raise ValidationError("La descripción debe tener al menos 10 caracteres.")
    if request.urgency not in {urgency.value for urgency in Urgency}:
        raise ValidationError(f"Urgencia no válida: {request.urgency}")


class ServiceRequestService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        assistant: Optional[AssistantService] = None,
        warranty_days: int = 30,
        business_timezone: str = "UTC",
        brand_name: str = "MaestroYa",
        whatsapp_country_code: str = "593",
    ) -> None:
        self._store = store
        self._assistant = assistant
        self._warranty_days = warranty_days
        self._timezone = ZoneInfo(business_timezone)
        self._brand_name = brand_name
        self._country_code = whatsapp_country_code

    async def get(self, service_id: str) -> ServiceRequest:
        snapshot = await self._store.get_document(SERVICE_REQUESTS, service_id)
        return load_document(ServiceRequest, snapshot)

    async def list(
        self,
        *,
        status: Optional[str] = None,
        technician_id: Optional[str] = None,
    ) -> ServiceRequestListResponse:
        filters: List[FieldFilter] = []
        if status:
            filters.append(FieldFilter("status", "==", status))
        if technician_id:
            filters.append(FieldFilter("technicianId", "==", technician_id))
        snapshots = await self._store.query_documents(
            SERVICE_REQUESTS, filters, order_by="createdAt", descending=True
        )
        items = [load_document(ServiceRequest, snap) for snap in snapshots]
        return ServiceRequestListResponse(total=len(items), items=items)

    def watch(self, service_id: Optional[str] = None, *, status: Optional[str] = None) -> Subscription:
        """Subscribe to one request or to the (optionally filtered) collection."""

        filters = [FieldFilter("status", "==", status)] if status else []
        return self._store.subscribe(SERVICE_REQUESTS, document_id=service_id, filters=filters)

    async def create(self, request: ServiceRequestCreate, session: SessionContext) -> ServiceRequest:
        _validate_intake(request)
        logger.info("Registering service request for %s", request.customer_name)
        now = utc_now()
        service = ServiceRequest(
            customer_name=request.customer_name.strip(),
            customer_email=request.customer_email or None,
            customer_phone=request.customer_phone or None,
            customer_origin=request.customer_origin,
            customer_id=f"CUST-{int(time.time() * 1000)}",
            service_type=request.service_type,
            location=request.location.strip(),
            problem_description=request.problem_description.strip(),
            urgency=request.urgency,
            status=ServiceStatus.PENDING,
            created_at=now,
            updated_at=now,
            history=[HistoryEntry(status=ServiceStatus.PENDING.value, timestamp=now, actor_id=session.uid)],
        )
        service.id = self._store.new_id(SERVICE_REQUESTS)

        batch = self._store.batch()
        batch.set(SERVICE_REQUESTS, service.id, service.to_document())
        if service.customer_email:
            mail = messages.intake_acknowledgement(service, brand_name=self._brand_name)
            batch.set(MAIL, self._store.new_id(MAIL), mail.to_document())
        await commit_batch(batch, f"intake of {service.id}")
        return service

    async def schedule(
        self, service_id: str, request: ScheduleRequest, session: SessionContext
    ) -> ServiceRequest:
        if request.scheduled_date is None:
            raise ValidationError("La fecha es requerida.")
        if not TIME_PATTERN.match(request.scheduled_time or ""):
            raise ValidationError("Formato de hora inválido (HH:MM).")

        service = await self.get(service_id)
        new_status = next_service_status(service.status, ServiceAction.SCHEDULE)

        hours, minutes = (int(part) for part in request.scheduled_time.split(":"))
        local = datetime.combine(request.scheduled_date, clock(hours, minutes), tzinfo=self._timezone)
        scheduled_at = local.astimezone(ZoneInfo("UTC"))
        now = utc_now()
        entry = HistoryEntry(
            status=new_status.value,
            timestamp=now,
            actor_id=session.uid,
            notes=request.notes or SCHEDULED_NOTE,
        )
        logger.info("Scheduling service request %s for %s", service_id, scheduled_at.isoformat())
        changes = {
            "status": new_status.value,
            "scheduledAt": scheduled_at,
            "updatedAt": now,
            "history": ArrayUnion([entry.model_dump(by_alias=True)]),
        }
        await commit_batch(
            self._store.batch().update(SERVICE_REQUESTS, service_id, changes),
            f"schedule of {service_id}",
        )
        return await self.get(service_id)

    async def start_work(self, service_id: str, session: SessionContext) -> ServiceRequest:
        service = await self.get(service_id)
        new_status = next_service_status(service.status, ServiceAction.START_WORK)
        now = utc_now()
        entry = HistoryEntry(
            status=new_status.value, timestamp=now, actor_id=session.uid, notes=START_WORK_NOTE
        )
        logger.info("Service request %s is en route", service_id)
        changes = {
            "status": new_status.value,
            "startedAt": now,
            "updatedAt": now,
            "history": ArrayUnion([entry.model_dump(by_alias=True)]),
        }
        await commit_batch(
            self._store.batch().update(SERVICE_REQUESTS, service_id, changes),
            f"start of {service_id}",
        )
        return await self.get(service_id)

    async def complete(
        self, service_id: str, report: CompletionReport, session: SessionContext
    ) -> ServiceRequest:
        if len(report.notes or "") < 10:
            raise ValidationError("Las notas deben tener al menos 10 caracteres.")
        if report.hours_worked is not None and (
            not math.isfinite(report.hours_worked) or report.hours_worked <= 0
        ):
            raise ValidationError("Las horas deben ser un número positivo.")
        if len(report.evidence_photos) > MAX_EVIDENCE_PHOTOS:
            raise ValidationError(f"Máximo {MAX_EVIDENCE_PHOTOS} fotos de evidencia.")

        service = await self.get(service_id)
        new_status = next_service_status(service.status, ServiceAction.COMPLETE)

        if not service.quote_id:
            raise MissingQuoteError("No hay una cotización aprobada asociada a este servicio.")
        quote_snapshot = await self._store.get_document(QUOTES, service.quote_id)
        if not quote_snapshot.exists:
            raise MissingQuoteError("La cotización asociada no fue encontrada.")
        quote = load_document(Quote, quote_snapshot)

        completed_at = utc_now()
        entry = HistoryEntry(
            status=new_status.value,
            timestamp=completed_at,
            actor_id=session.uid,
            notes=f"Trabajo completado. {report.notes}",
        )
        changes = {
            "status": new_status.value,
            "completedAt": completed_at,
            "updatedAt": completed_at,
            "completionNotes": report.notes,
            "hoursWorked": report.hours_worked or 0,
            "evidencePhotos": list(report.evidence_photos),
            "history": ArrayUnion([entry.model_dump(by_alias=True)]),
            **closing_fields(quote.total_amount or 0, completed_at, self._warranty_days),
        }
        logger.info(
            "Completing service request %s with total %.2f from quote %s",
            service_id,
            quote.total_amount or 0,
            quote.id,
        )
        await commit_batch(
            self._store.batch().update(SERVICE_REQUESTS, service_id, changes),
            f"completion of {service_id}",
        )
        return await self.get(service_id)

    async def register_payment(
        self, service_id: str, request: PaymentRequest, session: SessionContext
    ) -> ServiceRequest:
        if request.amount is None or not math.isfinite(request.amount) or request.amount <= 0:
            raise ValidationError("El monto debe ser mayor a cero.")
        if request.method not in {method.value for method in PaymentMethod}:
            raise ValidationError("Debe seleccionar un método de pago.")

        service = await self.get(service_id)
        next_service_status(service.status, ServiceAction.REGISTER_PAYMENT)

        payment = Payment(
            amount=request.amount,
            method=request.method,
            paid_at=request.paid_at or utc_now(),
            registered_by=session.uid,
            notes=request.notes or "",
        )
        payments = [*service.payments, payment]
        balance = remaining_balance(
            service.total_amount or 0, service.advance_payment or 0, payments
        )
        status = payment_status(balance, has_payments=True)
        logger.info(
            "Registering %s payment of %.2f on %s; balance now %.2f",
            payment.method,
            payment.amount,
            service_id,
            balance,
        )
        changes = {
            "payments": [item.model_dump(by_alias=True) for item in payments],
            "remainingBalance": balance,
            "paymentStatus": status.value,
            "updatedAt": utc_now(),
        }
        await commit_batch(
            self._store.batch().update(SERVICE_REQUESTS, service_id, changes),
            f"payment on {service_id}",
        )
        return await self.get(service_id)

    async def delete(self, service_id: str, session: SessionContext) -> DeletionResponse:
        service = await self.get(service_id)
        if service.payments:
            raise DeletionHasPaymentsError(
                "No se puede eliminar un servicio que ya tiene pagos registrados."
            )
        if ServiceStatus(service.status) not in SERVICE_DELETABLE:
            raise DeletionNotAllowedError(
                f"Solo se pueden eliminar servicios pendientes o cancelados (estado: {service.status})."
            )

        quotes = await self._store.query_documents(
            QUOTES, [FieldFilter("serviceRequestId", "==", service_id)]
        )
        batch = self._store.batch()
        for quote in quotes:
            batch.delete(QUOTES, quote.id)
        batch.delete(SERVICE_REQUESTS, service_id)
        logger.info(
            "User %s deleting service request %s and %s quotes",
            session.uid,
            service_id,
            len(quotes),
        )
        await commit_batch(batch, f"deletion of {service_id}")
        return DeletionResponse(id=service_id, deleted_quote_ids=[quote.id for quote in quotes])

    async def closing_message(self, service_id: str) -> ClosingMessageResponse:
        service = await self.get(service_id)
        if service.status != ServiceStatus.COMPLETED.value:
            raise PreconditionError("El servicio aún no ha sido completado.")
        message = messages.render_closing_message(service)
        url = None
        if service.customer_phone:
            url = messages.whatsapp_link(service.customer_phone, message, self._country_code)
        return ClosingMessageResponse(
            service_request_id=service_id, message=message, whatsapp_url=url
        )

    async def _technician_name(self, technician_id: Optional[str]) -> str:
        if not technician_id:
            return "Sin asignar"
        snapshot = await self._store.get_document(USERS, technician_id)
        if not snapshot.exists:
            return technician_id
        user = load_document(UserProfile, snapshot)
        return user.display_name or user.email or technician_id

    async def summarize(self, service_id: str) -> ServiceSummary:
        service = await self.get(service_id)
        data = ServiceSummaryInput(
            customer_name=service.customer_name,
            service_type=service.service_type,
            problem_description=service.problem_description,
            assigned_technician=await self._technician_name(service.technician_id),
            request_date=messages.format_date(service.created_at),
            priority=service.urgency,
        )
        if self._assistant is None:
            raise PreconditionError("El asistente no está configurado.")
        return await self._assistant.summarize_service_request(data)

    async def predict_time(
        self, service_id: str, historical_data: Optional[str] = None
    ) -> ServiceTimePrediction:
        service = await self.get(service_id)
        if self._assistant is None:
            raise PreconditionError("El asistente no está configurado.")
        return await self._assistant.predict_service_time(
            ServiceTimePredictionRequest(
                service_type=service.service_type,
                location=service.location,
                problem_description=service.problem_description,
                urgency=service.urgency,
                historical_data=historical_data,
            )
        )
