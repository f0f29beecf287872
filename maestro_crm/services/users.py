from __future__ import annotations

import logging
from typing import Optional

from maestro_crm.schemas.common import utc_now
from maestro_crm.schemas.session import SessionContext
from maestro_crm.schemas.users import (
    AuditLogEntry,
    AuditLogListResponse,
    RoleChangeDetails,
    RoleChangeResponse,
    UserListResponse,
    UserProfile,
)
from maestro_crm.services import messages
from maestro_crm.services.document_store import (
    AUDIT_LOGS,
    MAIL,
    USERS,
    DocumentStore,
    FieldFilter,
    commit_batch,
    load_document,
)
from maestro_crm.services.exceptions import SelfRoleChangeError, ValidationError

logger = logging.getLogger(__name__)

ROLES = (
    "SuperAdmin",
    "Gerente",
    "Dispatcher",
    "Técnico",
    "Cliente",
    "Maestro",
    "Auditor",
    "AdministradorClientes",
)

TECHNICAL_ROLES = (
    "Técnico",
    "Maestro",
    "Plomería",
    "Electricidad",
    "Albañilería",
    "Maestro General",
    "Aire Acondicionado",
    "Carpintería",
)


class UserService:
    def __init__(self, store: DocumentStore, *, brand_name: str = "MaestroYa CRM") -> None:
        self._store = store
        self._brand_name = brand_name

    async def get(self, uid: str) -> UserProfile:
        snapshot = await self._store.get_document(USERS, uid)
        return load_document(UserProfile, snapshot)

    async def list_users(self, *, role: Optional[str] = None) -> UserListResponse:
        filters = [FieldFilter("roles", "array-contains", role)] if role else []
        snapshots = await self._store.query_documents(USERS, filters, order_by="displayName")
        items = [load_document(UserProfile, snap) for snap in snapshots]
        return UserListResponse(total=len(items), items=items)

    async def list_technicians(self) -> UserListResponse:
        snapshots = await self._store.query_documents(
            USERS,
            [FieldFilter("roles", "array-contains-any", list(TECHNICAL_ROLES))],
            order_by="displayName",
        )
        items = [load_document(UserProfile, snap) for snap in snapshots]
        return UserListResponse(total=len(items), items=items)

    async def list_audit_logs(self, *, target_user_id: Optional[str] = None) -> AuditLogListResponse:
        filters = (
            [FieldFilter("targetUserId", "==", target_user_id)] if target_user_id else []
        )
        snapshots = await self._store.query_documents(
            AUDIT_LOGS, filters, order_by="timestamp", descending=True
        )
        items = [load_document(AuditLogEntry, snap) for snap in snapshots]
        return AuditLogListResponse(total=len(items), items=items)

    async def change_role(
        self, target_uid: str, new_role: str, session: SessionContext
    ) -> RoleChangeResponse:
        """Replace a user's roles with ``new_role``.

        The profile update, the audit entry and the notification mail are
        committed in a single batch, so either all three are stored or none.
        """

        if session.uid == target_uid:
            raise SelfRoleChangeError("No puedes cambiar tu propio rol.")
        if new_role not in ROLES:
            raise ValidationError(f"Rol no válido: {new_role}")

        target = await self.get(target_uid)
        previous_roles = list(target.roles)
        new_roles = [new_role]

        entry = AuditLogEntry(
            actor_id=session.uid,
            actor_email=session.email,
            target_user_id=target_uid,
            target_user_email=target.email,
            timestamp=utc_now(),
            details=RoleChangeDetails(previous_roles=previous_roles, new_roles=new_roles),
        )
        entry.id = self._store.new_id(AUDIT_LOGS)

        batch = (
            self._store.batch()
            .update(USERS, target_uid, {"roles": new_roles})
            .set(AUDIT_LOGS, entry.id, entry.to_document())
        )
        mail_id = None
        if target.email:
            mail = messages.role_change_notification(
                target, new_role, session, brand_name=self._brand_name
            )
            mail_id = self._store.new_id(MAIL)
            batch.set(MAIL, mail_id, mail.to_document())
        else:
            logger.warning("User %s has no email; role change notification skipped", target_uid)

        logger.info(
            "User %s changing roles of %s from %s to %s",
            session.uid,
            target_uid,
            previous_roles,
            new_roles,
        )
        await commit_batch(batch, f"role change of {target_uid}")
        target.roles = new_roles
        return RoleChangeResponse(user=target, audit_log_id=entry.id, mail_id=mail_id)
