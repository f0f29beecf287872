from typing import Optional

from fastapi import APIRouter, Depends, Query

from maestro_crm.dependencies.services import get_quote_service, get_session
from maestro_crm.schemas.quote import (
    Quote,
    QuoteCreate,
    QuoteItemsUpdate,
    QuoteListResponse,
    QuoteMessageResponse,
    WhatsAppDispatchResponse,
)
from maestro_crm.schemas.service_request import DeletionResponse
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services import QuoteService
from maestro_crm.services.exceptions import ServiceError
from maestro_crm.tools.errors import to_http_exception

router = APIRouter()


@router.post("", response_model=Quote, status_code=201)
async def create_quote(
    req: QuoteCreate,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.create(req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("", response_model=QuoteListResponse)
async def list_quotes(
    service_request_id: Optional[str] = Query(default=None, alias="serviceRequestId"),
    status: Optional[str] = Query(default=None),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.list(service_request_id=service_request_id, status=status)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{quote_id}", response_model=Quote)
async def get_quote(
    quote_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.get(quote_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{quote_id}/items", response_model=Quote)
async def update_quote_items(
    quote_id: str,
    req: QuoteItemsUpdate,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.update_items(quote_id, req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{quote_id}/generate-message", response_model=QuoteMessageResponse)
async def generate_quote_message(
    quote_id: str,
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.generate_message(quote_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{quote_id}/dispatch", response_model=WhatsAppDispatchResponse)
async def dispatch_quote(
    quote_id: str,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.dispatch_whatsapp(quote_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{quote_id}/approve", response_model=Quote)
async def approve_quote(
    quote_id: str,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.approve(quote_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{quote_id}/reject", response_model=Quote)
async def reject_quote(
    quote_id: str,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.reject(quote_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{quote_id}/expire", response_model=Quote)
async def expire_quote(
    quote_id: str,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        return await service.expire(quote_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{quote_id}", response_model=DeletionResponse)
async def delete_quote(
    quote_id: str,
    session: SessionContext = Depends(get_session),
    service: QuoteService = Depends(get_quote_service),
):
    try:
        await service.delete(quote_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return DeletionResponse(id=quote_id)
