from typing import Optional

from fastapi import APIRouter, Depends, Query

from maestro_crm.dependencies.services import get_session, get_user_service
from maestro_crm.schemas.session import SessionContext
from maestro_crm.schemas.users import (
    AuditLogListResponse,
    RoleChangeRequest,
    RoleChangeResponse,
    UserListResponse,
)
from maestro_crm.services import UserService
from maestro_crm.services.exceptions import ServiceError
from maestro_crm.tools.errors import to_http_exception

router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_users(
    role: Optional[str] = Query(default=None),
    service: UserService = Depends(get_user_service),
):
    try:
        return await service.list_users(role=role)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/technicians", response_model=UserListResponse)
async def list_technicians(service: UserService = Depends(get_user_service)):
    try:
        return await service.list_technicians()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    target_user_id: Optional[str] = Query(default=None, alias="targetUserId"),
    service: UserService = Depends(get_user_service),
):
    try:
        return await service.list_audit_logs(target_user_id=target_user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{uid}/role", response_model=RoleChangeResponse)
async def change_user_role(
    uid: str,
    req: RoleChangeRequest,
    session: SessionContext = Depends(get_session),
    service: UserService = Depends(get_user_service),
):
    try:
        return await service.change_role(uid, req.new_role, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
