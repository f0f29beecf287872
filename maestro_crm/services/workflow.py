"""Status transition tables for service requests and quotes.

Each table maps ``(current status, action)`` to the resulting status. The
side effects of a transition live in the services that apply it; this module
only decides whether a transition is legal.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Tuple

from maestro_crm.schemas.quote import QuoteStatus
from maestro_crm.schemas.service_request import ServiceStatus
from maestro_crm.services.exceptions import InvalidTransitionError


class ServiceAction(str, Enum):
    APPROVE_QUOTE = "approve_quote"
    SCHEDULE = "schedule"
    START_WORK = "start_work"
    COMPLETE = "complete"
    REGISTER_PAYMENT = "register_payment"


class QuoteAction(str, Enum):
    SEND = "send"
    APPROVE = "approve"
    REJECT = "reject"
    EXPIRE = "expire"
    EDIT = "edit"


SERVICE_TRANSITIONS: Dict[Tuple[ServiceStatus, ServiceAction], ServiceStatus] = {
    (ServiceStatus.PENDING, ServiceAction.APPROVE_QUOTE): ServiceStatus.ASSIGNED,
    (ServiceStatus.ASSIGNED, ServiceAction.SCHEDULE): ServiceStatus.SCHEDULED,
    (ServiceStatus.SCHEDULED, ServiceAction.START_WORK): ServiceStatus.EN_RUTA,
    (ServiceStatus.EN_RUTA, ServiceAction.COMPLETE): ServiceStatus.COMPLETED,
    # payments mutate commercial fields only
    (ServiceStatus.COMPLETED, ServiceAction.REGISTER_PAYMENT): ServiceStatus.COMPLETED,
}

SERVICE_DELETABLE: FrozenSet[ServiceStatus] = frozenset(
    {ServiceStatus.PENDING, ServiceStatus.CANCELLED}
)

QUOTE_TRANSITIONS: Dict[Tuple[QuoteStatus, QuoteAction], QuoteStatus] = {
    (QuoteStatus.DRAFT, QuoteAction.SEND): QuoteStatus.SENT,
    (QuoteStatus.DRAFT, QuoteAction.APPROVE): QuoteStatus.APPROVED,
    (QuoteStatus.SENT, QuoteAction.APPROVE): QuoteStatus.APPROVED,
    (QuoteStatus.DRAFT, QuoteAction.REJECT): QuoteStatus.REJECTED,
    (QuoteStatus.SENT, QuoteAction.REJECT): QuoteStatus.REJECTED,
    (QuoteStatus.DRAFT, QuoteAction.EXPIRE): QuoteStatus.EXPIRED,
    (QuoteStatus.SENT, QuoteAction.EXPIRE): QuoteStatus.EXPIRED,
    (QuoteStatus.DRAFT, QuoteAction.EDIT): QuoteStatus.DRAFT,
}

QUOTE_DELETABLE: FrozenSet[QuoteStatus] = frozenset(
    {QuoteStatus.DRAFT, QuoteStatus.REJECTED, QuoteStatus.EXPIRED}
)


def next_service_status(current: str, action: ServiceAction) -> ServiceStatus:
    status = ServiceStatus(current)
    try:
        return SERVICE_TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidTransitionError("service request", status.value, action.value) from None


def next_quote_status(current: str, action: QuoteAction) -> QuoteStatus:
    status = QuoteStatus(current)
    try:
        return QUOTE_TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidTransitionError("quote", status.value, action.value) from None
