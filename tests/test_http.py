"""HTTP surface over a temporary SQLite file."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from idempay.api import REPLAYED_HEADER, TRACE_HEADER, create_app
from idempay.config import Settings
from idempay.payments import InstantProcessor

BODY = {
    "amount": 85000,
    "currency": "IDR",
    "customer_id": "c1",
    "ride_id": "r1",
    "card_number": "4000000000000002",
}


@pytest.fixture
def processor() -> InstantProcessor:
    return InstantProcessor()


@pytest.fixture
def client(tmp_path, processor) -> Iterator[TestClient]:
    settings = Settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'http.db'}")
    with TestClient(create_app(settings, processor=processor)) as client:
        yield client


def post(client: TestClient, body: dict, key: str | None = "k1", **headers: str):
    if key is not None:
        headers["X-Idempotency-Key"] = key
    return client.post("/v1/payments", json=body, headers=headers)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "OK"}


def test_create_then_replay(client, processor):
    first = post(client, BODY)
    assert first.status_code == 201
    assert first.headers[REPLAYED_HEADER] == "false"

    payment = first.json()
    assert payment["status"] == "FAILED"
    assert payment["fail_reason"] == "insufficient_funds"
    assert payment["card_last_4"] == "0002"
    assert payment["amount"] == 85000

    second = post(client, BODY)
    assert second.status_code == 201
    assert second.headers[REPLAYED_HEADER] == "true"
    assert second.json() == payment
    assert processor.call_count == 1


def test_lookups(client):
    payment = post(client, BODY).json()

    found = client.get(f"/v1/payments/{payment['id']}")
    assert found.status_code == 200
    assert found.json() == payment

    record = client.get("/v1/idempotency/k1")
    assert record.status_code == 200
    body = record.json()
    assert body["status"] == "COMPLETED"
    assert body["payment_id"] == payment["id"]
    assert "response_snapshot" not in body


def test_conflict(client):
    post(client, BODY)

    response = post(client, {**BODY, "amount": 999})
    assert response.status_code == 409
    assert response.json()["code"] == "IDEMPOTENCY_KEY_CONFLICT"
    assert "k1" in response.json()["message"]


def test_missing_key(client):
    response = post(client, BODY, key=None)
    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_MISSING"


def test_invalid_request_lists_every_reason(client):
    response = post(client, {"currency": "IDR"})
    assert response.status_code == 400

    body = response.json()
    assert body["code"] == "INVALID_PAYMENT_REQUEST"
    assert body["details"] == [
        "amount must be greater than 0",
        "customer_id is required",
        "ride_id is required",
        "card_number is required",
    ]


def test_malformed_body(client):
    response = post(client, {**BODY, "amount": "lots"})
    assert response.status_code == 400
    assert response.json() == {
        "code": "INVALID_PAYMENT_REQUEST",
        "message": "invalid request body",
        "details": ["invalid request body"],
    }


def test_unsupported_currency(client):
    response = post(client, {**BODY, "currency": "USD"})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_CURRENCY"


def test_not_found(client):
    assert client.get("/v1/payments/nope").status_code == 404
    response = client.get("/v1/idempotency/nope")
    assert response.status_code == 404
    assert response.json()["code"] == "IDEMPOTENCY_KEY_NOT_FOUND"


def test_spanish_error_message(client):
    response = client.get("/v1/payments/nope", headers={"Accept-Language": "es-MX,es;q=0.9"})
    assert response.status_code == 404
    assert response.json()["message"] == "pago no encontrado"


def test_processor_failure_is_500_and_retryable(client, processor):
    processor.fail_with = ConnectionError("gateway down")
    assert post(client, BODY).status_code == 500

    processor.fail_with = None
    response = post(client, BODY)
    assert response.status_code == 201
    assert response.headers[REPLAYED_HEADER] == "false"


def test_trace_id_is_echoed(client):
    response = client.get("/health", headers={TRACE_HEADER: "trace-123"})
    assert response.headers[TRACE_HEADER] == "trace-123"


def test_trace_id_is_generated(client):
    assert client.get("/health").headers[TRACE_HEADER]


def test_unhandled_exception_becomes_500(client):
    async def boom() -> None:
        raise RuntimeError("unexpected")

    client.app.add_api_route("/boom", boom)

    response = client.get("/boom")
    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
    assert TRACE_HEADER in response.headers
