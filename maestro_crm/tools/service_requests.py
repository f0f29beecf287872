from typing import Optional

from fastapi import APIRouter, Depends, Query

from maestro_crm.dependencies.services import (
    get_knowledge_service,
    get_service_request_service,
    get_session,
)
from maestro_crm.schemas.assistant import (
    KnowledgeSuggestionRequest,
    KnowledgeSuggestions,
    ServiceSummary,
    ServiceTimePrediction,
)
from maestro_crm.schemas.billing import ClosingMessageResponse
from maestro_crm.schemas.service_request import (
    CompletionReport,
    DeletionResponse,
    PaymentRequest,
    ScheduleRequest,
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestListResponse,
)
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services import KnowledgeBaseService, ServiceRequestService
from maestro_crm.services.exceptions import ServiceError
from maestro_crm.tools.errors import to_http_exception

router = APIRouter()


@router.post("", response_model=ServiceRequest, status_code=201)
async def create_service_request(
    req: ServiceRequestCreate,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.create(req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("", response_model=ServiceRequestListResponse)
async def list_service_requests(
    status: Optional[str] = Query(default=None),
    technician_id: Optional[str] = Query(default=None, alias="technicianId"),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.list(status=status, technician_id=technician_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/suggest-articles", response_model=KnowledgeSuggestions)
async def suggest_articles(
    req: KnowledgeSuggestionRequest,
    knowledge: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        return await knowledge.suggest(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{service_id}", response_model=ServiceRequest)
async def get_service_request(
    service_id: str,
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.get(service_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/schedule", response_model=ServiceRequest)
async def schedule_service_request(
    service_id: str,
    req: ScheduleRequest,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.schedule(service_id, req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/start", response_model=ServiceRequest)
async def start_work(
    service_id: str,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.start_work(service_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/complete", response_model=ServiceRequest)
async def complete_service_request(
    service_id: str,
    req: CompletionReport,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.complete(service_id, req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/payments", response_model=ServiceRequest)
async def register_payment(
    service_id: str,
    req: PaymentRequest,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.register_payment(service_id, req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{service_id}", response_model=DeletionResponse)
async def delete_service_request(
    service_id: str,
    session: SessionContext = Depends(get_session),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.delete(service_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{service_id}/closing-message", response_model=ClosingMessageResponse)
async def closing_message(
    service_id: str,
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.closing_message(service_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/summary", response_model=ServiceSummary)
async def summarize_service_request(
    service_id: str,
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.summarize(service_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{service_id}/predict-time", response_model=ServiceTimePrediction)
async def predict_service_time(
    service_id: str,
    historical_data: Optional[str] = Query(default=None, alias="historicalData"),
    service: ServiceRequestService = Depends(get_service_request_service),
):
    try:
        return await service.predict_time(service_id, historical_data)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
