from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from maestro_crm.schemas.common import CamelModel, DocumentModel, Timestamp, utc_now


class KnowledgeArticle(DocumentModel):
    title: str
    content: str
    category: str = "General"
    author_id: Optional[str] = None
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Optional[Timestamp] = None


class KnowledgeArticleWrite(CamelModel):
    title: str
    content: str
    category: Optional[str] = None


class KnowledgeArticleListResponse(CamelModel):
    total: int
    items: List[KnowledgeArticle]
