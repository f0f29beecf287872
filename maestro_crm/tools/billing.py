from fastapi import APIRouter, Depends

from maestro_crm.dependencies.services import get_billing_service, get_session
from maestro_crm.schemas.billing import CollectionsResponse, InvoiceableResponse, ReminderResponse
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services import BillingService
from maestro_crm.services.exceptions import ServiceError
from maestro_crm.tools.errors import to_http_exception

router = APIRouter()


@router.get("/to-collect", response_model=CollectionsResponse)
async def to_collect(service: BillingService = Depends(get_billing_service)):
    try:
        return await service.to_collect()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/to-invoice", response_model=InvoiceableResponse)
async def to_invoice(service: BillingService = Depends(get_billing_service)):
    try:
        return await service.to_invoice()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/reminder", response_model=ReminderResponse)
async def send_payment_reminder(
    service_id: str,
    session: SessionContext = Depends(get_session),
    service: BillingService = Depends(get_billing_service),
):
    try:
        return await service.send_payment_reminder(service_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
