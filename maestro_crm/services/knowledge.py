from __future__ import annotations

import logging
from typing import Optional

from maestro_crm.schemas.assistant import KnowledgeSuggestionRequest, KnowledgeSuggestions
from maestro_crm.schemas.common import utc_now
from maestro_crm.schemas.knowledge import (
    KnowledgeArticle,
    KnowledgeArticleListResponse,
    KnowledgeArticleWrite,
)
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services.assistant import AssistantService
from maestro_crm.services.document_store import (
    KNOWLEDGE_ARTICLES,
    DocumentStore,
    FieldFilter,
    commit_batch,
    load_document,
)
from maestro_crm.services.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _validate(request: KnowledgeArticleWrite) -> None:
    if not request.title.strip():
        raise ValidationError("El título es requerido.")
    if not request.content.strip():
        raise ValidationError("El contenido es requerido.")


class KnowledgeBaseService:
    def __init__(self, store: DocumentStore, *, assistant: Optional[AssistantService] = None) -> None:
        self._store = store
        self._assistant = assistant

    async def get(self, article_id: str) -> KnowledgeArticle:
        snapshot = await self._store.get_document(KNOWLEDGE_ARTICLES, article_id)
        return load_document(KnowledgeArticle, snapshot)

    async def list(self, *, category: Optional[str] = None) -> KnowledgeArticleListResponse:
        filters = [FieldFilter("category", "==", category)] if category else []
        snapshots = await self._store.query_documents(
            KNOWLEDGE_ARTICLES, filters, order_by="createdAt", descending=True
        )
        items = [load_document(KnowledgeArticle, snap) for snap in snapshots]
        return KnowledgeArticleListResponse(total=len(items), items=items)

    async def create(self, request: KnowledgeArticleWrite, session: SessionContext) -> KnowledgeArticle:
        _validate(request)
        article = KnowledgeArticle(
            title=request.title.strip(),
            content=request.content.strip(),
            category=request.category or "General",
            author_id=session.uid,
            created_at=utc_now(),
        )
        article.id = await self._store.append(KNOWLEDGE_ARTICLES, article.to_document())
        logger.info("Knowledge article %s created by %s", article.id, session.uid)
        return article

    async def update(
        self, article_id: str, request: KnowledgeArticleWrite, session: SessionContext
    ) -> KnowledgeArticle:
        _validate(request)
        await self.get(article_id)
        changes = {
            "title": request.title.strip(),
            "content": request.content.strip(),
            "updatedAt": utc_now(),
        }
        if request.category:
            changes["category"] = request.category
        await commit_batch(
            self._store.batch().update(KNOWLEDGE_ARTICLES, article_id, changes),
            f"update of article {article_id}",
        )
        logger.info("Knowledge article %s updated by %s", article_id, session.uid)
        return await self.get(article_id)

    async def delete(self, article_id: str, session: SessionContext) -> None:
        await self.get(article_id)
        await commit_batch(
            self._store.batch().delete(KNOWLEDGE_ARTICLES, article_id),
            f"deletion of article {article_id}",
        )
        logger.info("Knowledge article %s deleted by %s", article_id, session.uid)

    async def suggest(self, request: KnowledgeSuggestionRequest) -> KnowledgeSuggestions:
        if not request.service_request_description.strip():
            raise ValidationError("La descripción es requerida.")
        articles = (await self.list()).items
        if self._assistant is None:
            return KnowledgeSuggestions(
                suggested_articles=AssistantService.rank_articles(
                    request.service_request_description, articles
                )
            )
        return await self._assistant.suggest_articles(request, articles)
