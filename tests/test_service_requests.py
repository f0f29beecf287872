import asyncio
import os
import sys
from datetime import date, datetime, timezone

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from maestro_crm.schemas.quote import QuoteCreate, QuoteItem
from maestro_crm.schemas.service_request import (
    CompletionReport,
    Payment,
    PaymentRequest,
    ScheduleRequest,
    ServiceRequest,
    ServiceRequestCreate,
)
from maestro_crm.schemas.session import SessionContext
from maestro_crm.services.document_store import (
    MAIL,
    QUOTES,
    SERVICE_REQUESTS,
    get_memory_store,
    reset_memory_store,
)
from maestro_crm.services.exceptions import (
    DeletionHasPaymentsError,
    DeletionNotAllowedError,
    InvalidTransitionError,
    MissingQuoteError,
    NotFoundError,
    ValidationError,
)
from maestro_crm.services.quotes import QuoteService
from maestro_crm.services.service_requests import ServiceRequestService


DISPATCHER = SessionContext(
    uid="USR-dispatch",
    email="dispatch@maestroya.ec",
    display_name="Diana Dispatcher",
    roles=["Dispatcher"],
)
TECHNICIAN = SessionContext(
    uid="USR-tech",
    email="tecnico@maestroya.ec",
    display_name="Tomás Técnico",
    roles=["Técnico"],
)


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_memory_store()
    yield
    reset_memory_store()


def _services():
    store = get_memory_store()
    requests = ServiceRequestService(store, business_timezone="America/Guayaquil")
    quotes = QuoteService(store)
    return store, requests, quotes


def _intake(**overrides) -> ServiceRequestCreate:
    data = dict(
        customer_name="María Pérez",
        customer_email="maria@example.com",
        customer_phone="0991234567",
        customer_origin="WhatsApp",
        service_type="Plomería",
        location="Av. Amazonas 123, Quito",
        problem_description="Fuga de agua en el baño principal",
        urgency="high",
    )
    data.update(overrides)
    return ServiceRequestCreate(**data)


def _seed_request(store, document_id: str, **fields) -> None:
    record = ServiceRequest(
        customer_name="Luis Andrade",
        customer_email="luis@example.com",
        service_type="Electricidad",
        location="Calle Larga 45, Cuenca",
        problem_description="Breaker principal se dispara",
        **fields,
    )
    asyncio.run(store.batch().set(SERVICE_REQUESTS, document_id, record.to_document()).commit())


def _approved_request(total: float = 200.0):
    store, requests, quotes = _services()
    service = asyncio.run(requests.create(_intake(), DISPATCHER))
    quote = asyncio.run(
        quotes.create(
            QuoteCreate(
                service_request_id=service.id,
                items=[QuoteItem(description="Mano de obra", quantity=1, price=total)],
                vat_percentage=0,
            ),
            TECHNICIAN,
        )
    )
    asyncio.run(quotes.approve(quote.id, DISPATCHER))
    return store, requests, service.id, quote.id


def _en_route_request(total: float = 200.0):
    store, requests, service_id, quote_id = _approved_request(total)
    asyncio.run(
        requests.schedule(
            service_id,
            ScheduleRequest(scheduled_date=date(2026, 10, 20), scheduled_time="14:30"),
            DISPATCHER,
        )
    )
    asyncio.run(requests.start_work(service_id, TECHNICIAN))
    return store, requests, service_id, quote_id


def _complete(requests, service_id):
    return asyncio.run(
        requests.complete(
            service_id,
            CompletionReport(notes="Se reemplazó la tubería dañada", hours_worked=2.5),
            TECHNICIAN,
        )
    )


def test_intake_creates_pending_request_and_acknowledgement_mail() -> None:
    store, requests, _ = _services()

    service = asyncio.run(requests.create(_intake(), DISPATCHER))

    assert service.id.startswith("SR-")
    assert service.status == "pending"
    assert service.customer_id.startswith("CUST-")
    assert service.technician_id is None
    assert [entry.status for entry in service.history] == ["pending"]
    assert service.history[0].actor_id == DISPATCHER.uid

    stored = asyncio.run(requests.get(service.id))
    assert stored.customer_name == "María Pérez"

    mails = store.dump()[MAIL]
    assert len(mails) == 1
    (mail,) = mails.values()
    assert mail["to"] == ["maria@example.com"]
    assert "Solicitud de Servicio Recibida" in mail["message"]["subject"]


def test_intake_without_email_skips_acknowledgement() -> None:
    store, requests, _ = _services()

    asyncio.run(requests.create(_intake(customer_email=""), DISPATCHER))

    assert store.dump()[MAIL] == {}


@pytest.mark.parametrize(
    "overrides",
    [
        {"customer_name": "M"},
        {"customer_email": "not-an-email"},
        {"customer_phone": "123"},
        {"customer_origin": "Fax"},
        {"service_type": "Jardinería"},
        {"location": "Lima"},
        {"problem_description": "Fuga"},
        {"urgency": "urgent"},
    ],
)
def test_intake_rejects_invalid_input_before_writing(overrides) -> None:
    store, requests, _ = _services()

    with pytest.raises(ValidationError):
        asyncio.run(requests.create(_intake(**overrides), DISPATCHER))

    assert store.dump()[SERVICE_REQUESTS] == {}


def test_intake_accepts_five_character_location() -> None:
    store, requests, _ = _services()

    service = asyncio.run(requests.create(_intake(location="Quito"), DISPATCHER))

    assert service.location == "Quito"
    assert list(store.dump()[SERVICE_REQUESTS]) == [service.id]


def test_get_unknown_request_raises_not_found() -> None:
    _, requests, _ = _services()

    with pytest.raises(NotFoundError):
        asyncio.run(requests.get("SR-99999"))


def test_list_filters_by_status_newest_first() -> None:
    store, requests, _ = _services()
    _seed_request(store, "SR-old", created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    _seed_request(store, "SR-new", created_at=datetime(2026, 3, 1, tzinfo=timezone.utc))
    _seed_request(store, "SR-done", status="completed")

    pending = asyncio.run(requests.list(status="pending"))

    assert pending.total == 2
    assert [item.id for item in pending.items] == ["SR-new", "SR-old"]


def test_approval_assigns_request_and_technician() -> None:
    _, requests, service_id, quote_id = _approved_request()

    service = asyncio.run(requests.get(service_id))

    assert service.status == "assigned"
    assert service.quote_id == quote_id
    assert service.technician_id == TECHNICIAN.uid
    assert [entry.status for entry in service.history] == ["pending", "assigned"]


def test_schedule_uses_business_timezone_and_default_note() -> None:
    _, requests, service_id, _ = _approved_request()

    service = asyncio.run(
        requests.schedule(
            service_id,
            ScheduleRequest(scheduled_date=date(2026, 10, 20), scheduled_time="14:30"),
            DISPATCHER,
        )
    )

    assert service.status == "scheduled"
    # Guayaquil is UTC-5 all year
    assert service.scheduled_at == datetime(2026, 10, 20, 19, 30, tzinfo=timezone.utc)
    assert service.history[-1].notes == "Servicio programado."


@pytest.mark.parametrize("value", ["24:00", "9:60", "noon", ""])
def test_schedule_rejects_malformed_time(value) -> None:
    _, requests, service_id, _ = _approved_request()

    with pytest.raises(ValidationError):
        asyncio.run(
            requests.schedule(
                service_id,
                ScheduleRequest(scheduled_date=date(2026, 10, 20), scheduled_time=value),
                DISPATCHER,
            )
        )

    assert asyncio.run(requests.get(service_id)).status == "assigned"


def test_schedule_requires_date() -> None:
    _, requests, service_id, _ = _approved_request()

    with pytest.raises(ValidationError):
        asyncio.run(requests.schedule(service_id, ScheduleRequest(), DISPATCHER))


def test_schedule_from_pending_is_an_invalid_transition() -> None:
    _, requests, _ = _services()
    service = asyncio.run(requests.create(_intake(), DISPATCHER))

    with pytest.raises(InvalidTransitionError):
        asyncio.run(
            requests.schedule(
                service.id,
                ScheduleRequest(scheduled_date=date(2026, 10, 20)),
                DISPATCHER,
            )
        )


def test_start_work_moves_request_en_route() -> None:
    _, requests, service_id, _ = _en_route_request()

    service = asyncio.run(requests.get(service_id))

    assert service.status == "en_ruta"
    assert service.started_at is not None
    assert service.history[-1].notes == "El técnico ha iniciado el trabajo y está en ruta."
    assert service.history[-1].actor_id == TECHNICIAN.uid


def test_completion_sets_commercial_closing_fields() -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)

    service = _complete(requests, service_id)

    assert service.status == "completed"
    assert service.total_amount == 200.0
    assert service.advance_payment == 0
    assert service.remaining_balance == 200.0
    assert service.payment_status == "pending"
    assert service.warranty_days == 30
    assert (service.warranty_expires_at - service.completed_at).days == 30
    assert service.payments == []
    assert service.hours_worked == 2.5
    assert service.history[-1].notes == "Trabajo completado. Se reemplazó la tubería dañada"


def test_completion_without_quote_keeps_request_en_route() -> None:
    store, requests, _ = _services()
    _seed_request(store, "SR-noquote", status="en_ruta")

    with pytest.raises(MissingQuoteError):
        _complete(requests, "SR-noquote")

    assert asyncio.run(requests.get("SR-noquote")).status == "en_ruta"


def test_completion_with_dangling_quote_reference_keeps_request_en_route() -> None:
    store, requests, _ = _services()
    _seed_request(store, "SR-dangling", status="en_ruta", quote_id="QT-gone")

    with pytest.raises(MissingQuoteError):
        _complete(requests, "SR-dangling")

    assert asyncio.run(requests.get("SR-dangling")).status == "en_ruta"


@pytest.mark.parametrize(
    "report",
    [
        CompletionReport(notes="corto"),
        CompletionReport(notes="Trabajo realizado sin novedad", hours_worked=0),
        CompletionReport(notes="Trabajo realizado sin novedad", hours_worked=float("nan")),
        CompletionReport(notes="Trabajo realizado sin novedad", evidence_photos=["p.jpg"] * 6),
    ],
)
def test_completion_report_is_validated(report) -> None:
    _, requests, service_id, _ = _en_route_request()

    with pytest.raises(ValidationError):
        asyncio.run(requests.complete(service_id, report, TECHNICIAN))


def test_full_payment_marks_request_paid() -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)
    _complete(requests, service_id)

    service = asyncio.run(
        requests.register_payment(
            service_id, PaymentRequest(amount=200, method="transfer"), DISPATCHER
        )
    )

    assert service.remaining_balance == 0
    assert service.payment_status == "paid"
    assert len(service.payments) == 1
    assert service.payments[0].registered_by == DISPATCHER.uid


def test_partial_payments_keep_balance_invariant() -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)
    _complete(requests, service_id)

    for amount in (50, 50, 50):
        service = asyncio.run(
            requests.register_payment(service_id, PaymentRequest(amount=amount), DISPATCHER)
        )
        paid = sum(payment.amount for payment in service.payments)
        expected = max(0, service.total_amount - service.advance_payment - paid)
        assert service.remaining_balance == pytest.approx(expected)
        assert (service.payment_status == "paid") == (service.remaining_balance == 0)

    assert service.payment_status == "partially_paid"
    assert service.remaining_balance == pytest.approx(50)

    service = asyncio.run(
        requests.register_payment(service_id, PaymentRequest(amount=80), DISPATCHER)
    )
    assert service.remaining_balance == 0
    assert service.payment_status == "paid"


def test_identical_payments_are_both_recorded() -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)
    _complete(requests, service_id)
    paid_at = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)

    for _ in range(2):
        service = asyncio.run(
            requests.register_payment(
                service_id, PaymentRequest(amount=40, paid_at=paid_at), DISPATCHER
            )
        )

    assert len(service.payments) == 2
    assert service.remaining_balance == pytest.approx(120)


@pytest.mark.parametrize(
    "request_data",
    [
        {"amount": 0},
        {"amount": -5},
        {"amount": float("nan")},
        {"amount": float("inf")},
        {"amount": 10, "method": "bitcoin"},
    ],
)
def test_payment_input_is_validated(request_data) -> None:
    _, requests, service_id, _ = _en_route_request()
    _complete(requests, service_id)

    with pytest.raises(ValidationError):
        asyncio.run(
            requests.register_payment(service_id, PaymentRequest(**request_data), DISPATCHER)
        )


@pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_payment_leaves_balance_unpaid(amount) -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)
    _complete(requests, service_id)

    with pytest.raises(ValidationError):
        asyncio.run(
            requests.register_payment(service_id, PaymentRequest(amount=amount), DISPATCHER)
        )

    service = asyncio.run(requests.get(service_id))
    assert service.payments == []
    assert service.remaining_balance == pytest.approx(200)
    assert service.payment_status == "pending"


def test_payment_requires_completed_request() -> None:
    _, requests, service_id, _ = _en_route_request()

    with pytest.raises(InvalidTransitionError):
        asyncio.run(requests.register_payment(service_id, PaymentRequest(amount=10), DISPATCHER))


@pytest.mark.parametrize("status", ["pending", "completed", "cancelled"])
def test_delete_with_payments_is_rejected_regardless_of_status(status) -> None:
    store, requests, _ = _services()
    payment = Payment(
        amount=20,
        method="cash",
        paid_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        registered_by="USR-dispatch",
    )
    _seed_request(store, "SR-paid", status=status, payments=[payment])

    with pytest.raises(DeletionHasPaymentsError):
        asyncio.run(requests.delete("SR-paid", DISPATCHER))

    assert "SR-paid" in store.dump()[SERVICE_REQUESTS]


def test_delete_in_progress_request_is_not_allowed() -> None:
    _, requests, service_id, _ = _approved_request()

    with pytest.raises(DeletionNotAllowedError):
        asyncio.run(requests.delete(service_id, DISPATCHER))


def test_delete_pending_request_cascades_to_quotes() -> None:
    store, requests, quotes = _services()
    service = asyncio.run(requests.create(_intake(), DISPATCHER))
    other = asyncio.run(requests.create(_intake(customer_name="Pedro Salas"), DISPATCHER))
    items = [QuoteItem(description="Revisión", quantity=1, price=30)]
    first = asyncio.run(quotes.create(QuoteCreate(service_request_id=service.id, items=items), TECHNICIAN))
    second = asyncio.run(quotes.create(QuoteCreate(service_request_id=service.id, items=items), TECHNICIAN))
    unrelated = asyncio.run(quotes.create(QuoteCreate(service_request_id=other.id, items=items), TECHNICIAN))

    response = asyncio.run(requests.delete(service.id, DISPATCHER))

    assert set(response.deleted_quote_ids) == {first.id, second.id}
    contents = store.dump()
    assert service.id not in contents[SERVICE_REQUESTS]
    assert set(contents[QUOTES]) == {unrelated.id}


def test_delete_cancelled_request_succeeds() -> None:
    store, requests, _ = _services()
    _seed_request(store, "SR-cancelled", status="cancelled")

    asyncio.run(requests.delete("SR-cancelled", DISPATCHER))

    assert store.dump()[SERVICE_REQUESTS] == {}


def test_closing_message_links_customer_whatsapp() -> None:
    _, requests, service_id, _ = _en_route_request(total=200.0)
    _complete(requests, service_id)

    response = asyncio.run(requests.closing_message(service_id))

    assert "SERVICIO COMPLETADO" in response.message
    assert "$200.00" in response.message
    assert "garantía de 30 días" in response.message
    assert response.whatsapp_url.startswith("https://wa.me/593991234567?text=")


def test_watch_pushes_new_document_state() -> None:
    store, requests, _ = _services()
    service = asyncio.run(requests.create(_intake(), DISPATCHER))

    async def scenario():
        subscription = requests.watch(service.id)
        initial = await subscription.__anext__()
        await store.batch().update(SERVICE_REQUESTS, service.id, {"status": "cancelled"}).commit()
        updated = await subscription.__anext__()
        subscription.close()
        return initial, updated

    initial, updated = asyncio.run(scenario())

    assert initial.data["status"] == "pending"
    assert updated.data["status"] == "cancelled"
