from __future__ import annotations

import asyncio
import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from maestro_crm.main import app
from maestro_crm.schemas.users import UserProfile
from maestro_crm.services.document_store import USERS, get_memory_store, reset_memory_store


HEADERS = {
    "X-Actor-Id": "USR-admin",
    "X-Actor-Email": "admin@maestroya.ec",
    "X-Actor-Name": "Ana Admin",
    "X-Actor-Roles": "SuperAdmin, Gerente",
}

INTAKE = {
    "customerName": "María Pérez",
    "customerEmail": "maria@example.com",
    "customerPhone": "0991234567",
    "customerOrigin": "Web",
    "serviceType": "Plomería",
    "location": "Av. Amazonas 123, Quito",
    "problemDescription": "Fuga de agua en el baño principal",
    "urgency": "medium",
}


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_memory_store()
    yield
    reset_memory_store()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _create_request(client: TestClient) -> dict:
    response = client.post("/api/service-requests", json=INTAKE, headers=HEADERS)
    assert response.status_code == 201
    return response.json()


def _create_quote(client: TestClient, service_id: str) -> dict:
    response = client.post(
        "/api/quotes",
        json={
            "serviceRequestId": service_id,
            "items": [{"description": "Cambio de tubería", "quantity": 2, "price": 50}],
            "vatPercentage": 15,
            "discountAmount": 10,
        },
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "store": "memory"}


def test_writes_require_actor_header(client: TestClient) -> None:
    response = client.post("/api/service-requests", json=INTAKE)

    assert response.status_code == 401


def test_full_lifecycle_over_http(client: TestClient) -> None:
    service = _create_request(client)
    assert service["status"] == "pending"
    assert service["customerName"] == "María Pérez"

    quote = _create_quote(client, service["id"])
    assert quote["totalAmount"] == 105
    assert quote["technicianId"] == "USR-admin"

    dispatch = client.post(f"/api/quotes/{quote['id']}/dispatch", headers=HEADERS)
    assert dispatch.status_code == 200
    assert dispatch.json()["status"] == "sent"
    assert dispatch.json()["url"].startswith("https://wa.me/593991234567")

    approved = client.post(f"/api/quotes/{quote['id']}/approve", headers=HEADERS)
    assert approved.json()["status"] == "approved"

    scheduled = client.post(
        f"/api/service-requests/{service['id']}/schedule",
        json={"scheduledDate": "2026-10-20", "scheduledTime": "09:15"},
        headers=HEADERS,
    )
    assert scheduled.status_code == 200
    assert scheduled.json()["status"] == "scheduled"

    started = client.post(f"/api/service-requests/{service['id']}/start", headers=HEADERS)
    assert started.json()["status"] == "en_ruta"

    completed = client.post(
        f"/api/service-requests/{service['id']}/complete",
        json={"notes": "Se cambió la tubería del baño", "hoursWorked": 2},
        headers=HEADERS,
    )
    body = completed.json()
    assert completed.status_code == 200
    assert body["status"] == "completed"
    assert body["remainingBalance"] == 105
    assert body["paymentStatus"] == "pending"
    assert body["warrantyDays"] == 30

    collect = client.get("/api/billing/to-collect")
    assert collect.json()["totalOutstanding"] == 105

    paid = client.post(
        f"/api/service-requests/{service['id']}/payments",
        json={"amount": 105, "method": "card"},
        headers=HEADERS,
    )
    assert paid.json()["paymentStatus"] == "paid"
    assert paid.json()["payments"][0]["registeredBy"] == "USR-admin"

    invoice = client.get("/api/billing/to-invoice")
    assert [item["id"] for item in invoice.json()["items"]] == [service["id"]]

    closing = client.get(f"/api/service-requests/{service['id']}/closing-message")
    assert "SERVICIO COMPLETADO" in closing.json()["message"]


def test_error_mapping(client: TestClient) -> None:
    service = _create_request(client)

    missing = client.get("/api/service-requests/SR-99999")
    assert missing.status_code == 404

    bad_time = client.post(
        f"/api/service-requests/{service['id']}/schedule",
        json={"scheduledDate": "2026-10-20", "scheduledTime": "25:00"},
        headers=HEADERS,
    )
    assert bad_time.status_code == 422

    wrong_state = client.post(
        f"/api/service-requests/{service['id']}/start",
        headers=HEADERS,
    )
    assert wrong_state.status_code == 409
    assert "start_work" in wrong_state.json()["detail"]


def test_delete_request_cascades_over_http(client: TestClient) -> None:
    service = _create_request(client)
    quote = _create_quote(client, service["id"])

    response = client.delete(f"/api/service-requests/{service['id']}", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["deletedQuoteIds"] == [quote["id"]]
    assert client.get(f"/api/quotes/{quote['id']}").status_code == 404


def test_role_change_over_http(client: TestClient) -> None:
    store = get_memory_store()
    user = UserProfile(uid="USR-u", email="usuario@example.com", display_name="Ulises", roles=["Cliente"])
    asyncio.run(store.batch().set(USERS, user.uid, user.to_document()).commit())

    response = client.put("/api/users/USR-u/role", json={"newRole": "Técnico"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["user"]["roles"] == ["Técnico"]

    self_change = client.put(
        "/api/users/USR-admin/role", json={"newRole": "Cliente"}, headers=HEADERS
    )
    assert self_change.status_code == 409

    logs = client.get("/api/users/audit-logs")
    assert logs.json()["total"] == 1
    assert logs.json()["items"][0]["details"]["previousRoles"] == ["Cliente"]

    technicians = client.get("/api/users/technicians")
    assert [item["uid"] for item in technicians.json()["items"]] == ["USR-u"]


def test_knowledge_endpoints(client: TestClient) -> None:
    created = client.post(
        "/api/knowledge",
        json={"title": "Reparar fuga de agua", "content": "Cerrar la llave de paso y revisar la tubería."},
        headers=HEADERS,
    )
    assert created.status_code == 201
    article_id = created.json()["id"]

    listed = client.get("/api/knowledge")
    assert listed.json()["total"] == 1

    deleted = client.delete(f"/api/knowledge/{article_id}", headers=HEADERS)
    assert deleted.json() == {"status": "deleted", "id": article_id, "deletedQuoteIds": []}


def test_store_view_renders_collections(client: TestClient) -> None:
    service = _create_request(client)

    response = client.get("/store")

    assert response.status_code == 200
    assert "Store Overview" in response.text
    assert service["id"] in response.text
    assert "maria@example.com" in response.text

    raw = client.get("/store/serviceRequests")
    assert raw.json()[service["id"]]["customerName"] == "María Pérez"
    assert client.get("/store/unknown").status_code == 404


def test_assistant_endpoints_fall_back_without_api_key(client: TestClient) -> None:
    service = _create_request(client)

    summary = client.post(f"/api/service-requests/{service['id']}/summary")
    assert summary.status_code == 200
    assert "María Pérez" in summary.json()["summary"]
    assert "Sin asignar" in summary.json()["summary"]

    prediction = client.post(f"/api/service-requests/{service['id']}/predict-time")
    assert prediction.json() == {"predictedServiceTime": "90 minutes", "confidenceLevel": "low"}

    suggestions = client.post(
        "/api/service-requests/suggest-articles",
        json={"serviceRequestDescription": "fuga de agua"},
    )
    assert suggestions.json() == {"suggestedArticles": []}
