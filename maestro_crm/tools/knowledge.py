from typing import Optional

from fastapi import APIRouter, Depends, Query

from maestro_crm.dependencies.services import get_knowledge_service, get_session
from maestro_crm.schemas.knowledge import (
    KnowledgeArticle,
    KnowledgeArticleListResponse,
    KnowledgeArticleWrite,
)
from maestro_crm.schemas.service_request import DeletionResponse
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services import KnowledgeBaseService
from maestro_crm.services.exceptions import ServiceError
from maestro_crm.tools.errors import to_http_exception

router = APIRouter()


@router.get("", response_model=KnowledgeArticleListResponse)
async def list_articles(
    category: Optional[str] = Query(default=None),
    service: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        return await service.list(category=category)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=KnowledgeArticle, status_code=201)
async def create_article(
    req: KnowledgeArticleWrite,
    session: SessionContext = Depends(get_session),
    service: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        return await service.create(req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{article_id}", response_model=KnowledgeArticle)
async def get_article(
    article_id: str,
    service: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        return await service.get(article_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.put("/{article_id}", response_model=KnowledgeArticle)
async def update_article(
    article_id: str,
    req: KnowledgeArticleWrite,
    session: SessionContext = Depends(get_session),
    service: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        return await service.update(article_id, req, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{article_id}", response_model=DeletionResponse)
async def delete_article(
    article_id: str,
    session: SessionContext = Depends(get_session),
    service: KnowledgeBaseService = Depends(get_knowledge_service),
):
    try:
        await service.delete(article_id, session)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
    return DeletionResponse(id=article_id)
