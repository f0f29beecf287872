from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from maestro_crm.schemas.common import CamelModel, DocumentModel, Timestamp, utc_now

ROLE_UPDATE_ACTION = "user.role.update"


class UserProfile(DocumentModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)


class RoleChangeRequest(CamelModel):
    new_role: str


class RoleChangeDetails(CamelModel):
    previous_roles: List[str] = Field(default_factory=list)
    new_roles: List[str] = Field(default_factory=list)


class AuditLogEntry(DocumentModel):
    action: str = ROLE_UPDATE_ACTION
    actor_id: str
    actor_email: Optional[str] = None
    target_user_id: str
    target_user_email: Optional[str] = None
    timestamp: Timestamp = Field(default_factory=utc_now)
    details: RoleChangeDetails


class RoleChangeResponse(CamelModel):
    user: UserProfile
    audit_log_id: str
    mail_id: Optional[str] = None


class UserListResponse(CamelModel):
    total: int
    items: List[UserProfile]


class AuditLogListResponse(CamelModel):
    total: int
    items: List[AuditLogEntry]
