import asyncio
import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from maestro_crm.schemas.assistant import KnowledgeSuggestionRequest
from maestro_crm.schemas.knowledge import KnowledgeArticleWrite
from maestro_crm.schemas.service_request import ServiceRequest
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services.assistant import AssistantService
from maestro_crm.services.billing import BillingService
from maestro_crm.services.document_store import (
    KNOWLEDGE_ARTICLES,
    MAIL,
    SERVICE_REQUESTS,
    get_memory_store,
    reset_memory_store,
)
from maestro_crm.services.exceptions import NotFoundError, PreconditionError, ValidationError
from maestro_crm.services.knowledge import KnowledgeBaseService


MANAGER = SessionContext(uid="USR-gerente", email="gerente@maestroya.ec", roles=["Gerente"])


class SilentGenerator:
    async def generate(self, prompt):
        return None


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_memory_store()
    yield
    reset_memory_store()


def _seed(store, document_id: str, **fields) -> None:
    record = ServiceRequest(
        customer_name=fields.pop("customer_name", "Carla Ruiz"),
        customer_email=fields.pop("customer_email", "carla@example.com"),
        service_type="Electricidad",
        location="Av. 6 de Diciembre, Quito",
        problem_description="Tomacorrientes sin energía",
        **fields,
    )
    asyncio.run(store.batch().set(SERVICE_REQUESTS, document_id, record.to_document()).commit())


def _seed_billing(store) -> None:
    _seed(store, "SR-owed", status="completed", total_amount=150, advance_payment=0,
          remaining_balance=150, payment_status="pending")
    _seed(store, "SR-partial", status="completed", total_amount=100, advance_payment=0,
          remaining_balance=40, payment_status="partially_paid")
    _seed(store, "SR-paid", status="completed", total_amount=80, advance_payment=0,
          remaining_balance=0, payment_status="paid")
    _seed(store, "SR-open", status="pending")


def test_to_collect_lists_outstanding_balances() -> None:
    store = get_memory_store()
    _seed_billing(store)

    response = asyncio.run(BillingService(store).to_collect())

    assert {item.id for item in response.items} == {"SR-owed", "SR-partial"}
    assert response.total_outstanding == pytest.approx(190)


def test_to_invoice_lists_paid_completed_requests() -> None:
    store = get_memory_store()
    _seed_billing(store)

    response = asyncio.run(BillingService(store).to_invoice())

    assert [item.id for item in response.items] == ["SR-paid"]


def test_payment_reminder_is_queued_as_mail() -> None:
    store = get_memory_store()
    _seed_billing(store)

    response = asyncio.run(BillingService(store, brand_name="MaestroYa").send_payment_reminder("SR-owed"))

    mail = store.dump()[MAIL][response.mail_id]
    assert response.to == ["carla@example.com"]
    assert mail["message"]["subject"].startswith("Recordatorio de Pago")
    assert "$150.00" in mail["message"]["html"]


def test_payment_reminder_requires_email_and_balance() -> None:
    store = get_memory_store()
    _seed_billing(store)
    _seed(store, "SR-noemail", customer_email=None, status="completed", total_amount=10,
          remaining_balance=10, payment_status="pending")
    billing = BillingService(store)

    with pytest.raises(ValidationError):
        asyncio.run(billing.send_payment_reminder("SR-noemail"))
    with pytest.raises(PreconditionError):
        asyncio.run(billing.send_payment_reminder("SR-paid"))
    assert store.dump()[MAIL] == {}


def test_knowledge_article_crud() -> None:
    store = get_memory_store()
    knowledge = KnowledgeBaseService(store)

    article = asyncio.run(
        knowledge.create(
            KnowledgeArticleWrite(title="Cambio de breaker", content="Cortar la energía antes de..."),
            MANAGER,
        )
    )
    assert article.id.startswith("KB-")
    assert article.category == "General"
    assert article.author_id == MANAGER.uid

    updated = asyncio.run(
        knowledge.update(
            article.id,
            KnowledgeArticleWrite(title="Cambio de breaker", content="Nuevo contenido", category="Electricidad"),
            MANAGER,
        )
    )
    assert updated.content == "Nuevo contenido"
    assert updated.category == "Electricidad"
    assert updated.updated_at is not None

    listed = asyncio.run(knowledge.list(category="Electricidad"))
    assert [item.id for item in listed.items] == [article.id]

    asyncio.run(knowledge.delete(article.id, MANAGER))
    assert store.dump()[KNOWLEDGE_ARTICLES] == {}
    with pytest.raises(NotFoundError):
        asyncio.run(knowledge.get(article.id))


def test_knowledge_article_requires_title_and_content() -> None:
    knowledge = KnowledgeBaseService(get_memory_store())

    with pytest.raises(ValidationError):
        asyncio.run(knowledge.create(KnowledgeArticleWrite(title=" ", content="Algo"), MANAGER))
    with pytest.raises(ValidationError):
        asyncio.run(knowledge.create(KnowledgeArticleWrite(title="Algo", content=""), MANAGER))


def test_suggestions_fall_back_to_keyword_ranking() -> None:
    store = get_memory_store()
    knowledge = KnowledgeBaseService(store, assistant=AssistantService(SilentGenerator()))
    for title, content in [
        ("Reparar fuga de agua", "Cerrar la llave de paso y revisar la tubería."),
        ("Instalar aire acondicionado", "Verificar el voltaje y el drenaje."),
        ("Destapar tubería del lavabo", "Usar sonda para la tubería."),
    ]:
        asyncio.run(knowledge.create(KnowledgeArticleWrite(title=title, content=content), MANAGER))

    suggestions = asyncio.run(
        knowledge.suggest(
            KnowledgeSuggestionRequest(service_request_description="Hay una fuga de agua en la tubería")
        )
    )

    assert suggestions.suggested_articles[0] == "Reparar fuga de agua"
    assert "Instalar aire acondicionado" not in suggestions.suggested_articles
