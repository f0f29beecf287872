"""Workflow services, imported lazily to avoid cycles with the store module."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "AssistantService",
    "BillingService",
    "KnowledgeBaseService",
    "QuoteService",
    "ServiceRequestService",
    "UserService",
]

_SERVICE_MODULES = {
    "AssistantService": "assistant",
    "BillingService": "billing",
    "KnowledgeBaseService": "knowledge",
    "QuoteService": "quotes",
    "ServiceRequestService": "service_requests",
    "UserService": "users",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .assistant import AssistantService as AssistantService
    from .billing import BillingService as BillingService
    from .knowledge import KnowledgeBaseService as KnowledgeBaseService
    from .quotes import QuoteService as QuoteService
    from .service_requests import ServiceRequestService as ServiceRequestService
    from .users import UserService as UserService
