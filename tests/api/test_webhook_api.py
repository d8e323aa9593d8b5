"""
HTTP surface tests: POST /webhooks/payments and GET /health.

Tests cover:
- Signature rejection before any processing (400)
- Malformed envelopes (400)
- Processed, duplicate and failed events (200 / 200 deduplicated / 500)
"""

import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from order_api.app import create_app
from order_api.routers.webhooks import SIGNATURE_HEADER
from order_api.runtime import build_runtime
from order_config import get_active_config
from order_kernel.models.order import Order

SECRET = "whsec_api_test"


@pytest.fixture
def runtime(engine, clock, catalog):
    config = get_active_config(environ={
        "PAYMENT_WEBHOOK_SECRET": SECRET,
        "KIENDLER_EMAIL": "bestellung@kiendler.example",
        "HERNACH_EMAIL": "office@hernach.example",
    })
    return build_runtime(config, clock=clock, engine=engine)


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as client:
        yield client


@pytest.fixture
def post_event(client, clock, sign_webhook):
    def _post(document, secret=SECRET, header=None):
        body = json.dumps(document).encode()
        if header is None:
            header = sign_webhook(secret, int(clock.now().timestamp()), body)
        return client.post(
            "/webhooks/payments",
            content=body,
            headers={SIGNATURE_HEADER: header, "Content-Type": "application/json"},
        )

    return _post


@pytest.fixture
def checkout_document(catalog):
    return {
        "id": "evt_api_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_api_1",
            "payment_intent": "pi_api_1",
            "line_items": [
                {"variant_id": str(catalog["KOL-250"]), "quantity": 2},
                {"variant_id": str(catalog["KRN-100"]), "quantity": 1},
            ],
            "shipping_address": {
                "name": "Maria Huber",
                "street": "Hauptplatz 1",
                "city": "Graz",
                "postal_code": "8010",
                "country": "AT",
            },
            "shipping_cents": 500,
            "payment_fee_cents": 120,
            "customer_email": "maria.huber@example.at",
        }},
    }


def _order_count(runtime) -> int:
    with runtime.session_factory() as s:
        return s.execute(select(func.count()).select_from(Order)).scalar_one()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestSignature:
    def test_wrong_secret(self, post_event, checkout_document, runtime):
        response = post_event(checkout_document, secret="whsec_other")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature", "code": "INVALID_SIGNATURE"}
        assert _order_count(runtime) == 0

    def test_missing_header(self, client, checkout_document):
        response = client.post("/webhooks/payments", content=json.dumps(checkout_document))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_SIGNATURE"


class TestEnvelope:
    def test_missing_event_id(self, post_event):
        response = post_event({"type": "checkout.session.completed", "data": {"object": {}}})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_WEBHOOK_PAYLOAD"


class TestProcessing:
    def test_checkout_creates_order(self, post_event, checkout_document, runtime):
        response = post_event(checkout_document)

        assert response.status_code == 200
        assert response.json() == {"received": True, "action": "order_created"}
        assert _order_count(runtime) == 1
        assert len(runtime.mailer.sent) == 2

    def test_redelivery_is_deduplicated(self, post_event, checkout_document, runtime):
        post_event(checkout_document)

        response = post_event(checkout_document)

        assert response.status_code == 200
        assert response.json() == {"received": True, "deduplicated": True}
        assert _order_count(runtime) == 1

    def test_processing_failure_is_500(self, post_event, checkout_document, catalog):
        checkout_document["data"]["object"]["line_items"] = [
            {"variant_id": str(catalog["KRN-999"]), "quantity": 1}
        ]

        response = post_event(checkout_document)

        assert response.status_code == 500
        assert "KRN-999" in response.json()["error"]

    def test_unknown_event_type_acknowledged(self, post_event):
        response = post_event({"id": "evt_other", "type": "customer.created", "data": {"object": {}}})
        assert response.status_code == 200
        assert response.json() == {"received": True, "action": "ignored"}
