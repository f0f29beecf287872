from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from maestro_crm.clients.store_http import HttpDocumentStore
from maestro_crm.config import Settings, get_settings
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services import (
    AssistantService,
    BillingService,
    KnowledgeBaseService,
    QuoteService,
    ServiceRequestService,
    UserService,
)
from maestro_crm.services.assistant import GeminiTextGenerator
from maestro_crm.services.document_store import DocumentStore, get_memory_store

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_http_store_cached() -> HttpDocumentStore:
    settings = get_settings()
    logger.info("Using document store gateway at %s", settings.store_base_url)
    return HttpDocumentStore(
        str(settings.store_base_url),
        timeout=settings.store_timeout,
        token=settings.store_token,
        poll_interval=settings.store_poll_interval,
    )


def resolve_store(settings: Settings) -> DocumentStore:
    if settings.use_memory_store or not settings.store_base_url:
        return get_memory_store()
    return get_http_store_cached()


def get_store(settings: Settings = Depends(get_settings)) -> DocumentStore:
    return resolve_store(settings)


def get_session(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_email: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_roles: Optional[str] = Header(default=None),
) -> SessionContext:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    roles = [role.strip() for role in (x_actor_roles or "").split(",") if role.strip()]
    return SessionContext(
        uid=x_actor_id,
        email=x_actor_email,
        display_name=x_actor_name,
        roles=roles,
    )


def get_assistant_service(
    settings: Settings = Depends(get_settings),
) -> AssistantService:
    generator = GeminiTextGenerator(
        api_key=settings.google_api_key,
        model=settings.assistant_model,
    )
    return AssistantService(generator, brand_name=settings.brand_name)


def get_service_request_service(
    store: DocumentStore = Depends(get_store),
    assistant: AssistantService = Depends(get_assistant_service),
    settings: Settings = Depends(get_settings),
) -> ServiceRequestService:
    return ServiceRequestService(
        store,
        assistant=assistant,
        warranty_days=settings.warranty_days,
        business_timezone=settings.business_timezone,
        brand_name=settings.brand_name,
        whatsapp_country_code=settings.whatsapp_country_code,
    )


def get_quote_service(
    store: DocumentStore = Depends(get_store),
    assistant: AssistantService = Depends(get_assistant_service),
    settings: Settings = Depends(get_settings),
) -> QuoteService:
    return QuoteService(
        store,
        assistant=assistant,
        default_vat_percentage=settings.default_vat_percentage,
        validity_days=settings.quote_validity_days,
        whatsapp_country_code=settings.whatsapp_country_code,
    )


def get_user_service(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> UserService:
    return UserService(store, brand_name=settings.brand_name)


def get_billing_service(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> BillingService:
    return BillingService(store, brand_name=settings.brand_name)


def get_knowledge_service(
    store: DocumentStore = Depends(get_store),
    assistant: AssistantService = Depends(get_assistant_service),
) -> KnowledgeBaseService:
    return KnowledgeBaseService(store, assistant=assistant)
