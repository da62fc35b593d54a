"""Tests for the HTTP API."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from square_sync.api.app import create_app, status_for
from square_sync.api.dependencies import get_bridge
from square_sync.config import get_settings
from square_sync.database import reset_db
from square_sync.errors import (
    CardDeclinedError,
    ConflictError,
    DecodeError,
    ProtocolError,
    RefundRejectedError,
    SquareSyncError,
    UnsupportedCadenceError,
)
from square_sync.repositories.base import Contribution, RecurringContribution


@pytest.fixture
def client(bridge, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    get_settings.cache_clear()
    reset_db()
    app = create_app()
    app.dependency_overrides[get_bridge] = lambda: bridge
    yield TestClient(app)
    reset_db()
    get_settings.cache_clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"

    def test_ready_and_live(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}


class TestWebhookRoute:
    def test_signed_event_applied(self, client, signed, repos):
        event = {
            "event_id": "evt-1",
            "type": "payment.created",
            "data": {
                "object": {
                    "payment": {
                        "id": "PAY_1",
                        "status": "COMPLETED",
                        "amount_money": {"amount": 1500, "currency": "USD"},
                        "buyer_email_address": "grace@example.org",
                    }
                }
            },
        }
        raw, headers = signed(event)

        response = client.post("/webhooks/square", content=raw, headers=headers)

        assert response.status_code == 200
        assert response.text == "OK"
        created = repos.contributions.get_by_trxn_id("PAY_1")
        assert created.contact_id == 8
        assert created.total_amount == Decimal("15.00")

    def test_unsigned_rejected(self, client):
        response = client.post("/webhooks/square", content=b'{"type": "payment.created"}')

        assert response.status_code == 401
        assert response.text == "Invalid signature"


class TestPayments:
    def test_create_payment(self, client, fake_square):
        response = client.post(
            "/api/v1/payments",
            json={"contact_id": 7, "token": "cnon:ok", "amount": "19.99"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "Completed"
        assert data["gateway_status"] == "COMPLETED"
        assert fake_square.calls_to("POST", "/v2/payments")[0].body["amount_money"]["amount"] == 1999

    def test_unknown_contact_is_404(self, client):
        response = client.post("/api/v1/payments", json={"contact_id": 999, "token": "t", "amount": "5.00"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_schema_validation(self, client):
        response = client.post("/api/v1/payments", json={"contact_id": 7, "token": "", "amount": "-1"})

        assert response.status_code == 422

    def test_gateway_error_is_502_with_details(self, client, fake_square):
        fake_square.fail("POST", "/v2/payments", 500, [{"code": "INTERNAL_SERVER_ERROR", "detail": "oops"}])

        response = client.post("/api/v1/payments", json={"contact_id": 7, "token": "t", "amount": "5.00"})

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "PROTOCOL_ERROR"
        assert body["errors"][0]["code"] == "INTERNAL_SERVER_ERROR"


class TestRecurring:
    @pytest.fixture
    def recur(self, repos):
        return repos.recurring.create(RecurringContribution(contact_id=7, amount=Decimal("25.00")))

    def test_create_recurring(self, client, recur, repos):
        response = client.post(
            "/api/v1/recurring",
            json={
                "contact_id": 7,
                "recur_id": recur.id,
                "token": "cnon:ok",
                "amount": "25.00",
                "frequency_unit": "month",
                "billing": {"postal_code": "94103", "country": "USA"},
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["start_date"] == "2025-04-01"
        assert data["status"] == "Pending"
        assert repos.recurring.get(recur.id).processor_id == data["subscription_id"]

    def test_unsupported_cadence_is_400(self, client, recur):
        response = client.post(
            "/api/v1/recurring",
            json={
                "contact_id": 7,
                "recur_id": recur.id,
                "token": "cnon:ok",
                "amount": "25.00",
                "frequency_unit": "month",
                "frequency_interval": 5,
            },
        )

        assert response.status_code == 400
        assert response.json()["code"] == "UNSUPPORTED_CADENCE"

    def test_declined_card_is_402(self, client, recur, fake_square):
        fake_square.fail("POST", "/v2/cards", 400, [{"code": "CARD_DECLINED", "detail": "declined"}])

        response = client.post(
            "/api/v1/recurring",
            json={"contact_id": 7, "recur_id": recur.id, "token": "cnon:bad", "amount": "25.00", "frequency_unit": "month"},
        )

        assert response.status_code == 402
        assert response.json()["detail"] == "Your card was declined. Please use a different card."


class TestRefundsAndSubscriptions:
    def test_refund_marks_contribution(self, client, repos):
        contribution = repos.contributions.create(
            Contribution(contact_id=7, total_amount=Decimal("50.00"), trxn_id="PAY_1", contribution_status="Completed")
        )

        response = client.post("/api/v1/refunds", json={"payment_id": "PAY_1", "amount": "50.00"})

        assert response.status_code == 201
        assert response.json()["sync_outcome"] == "updated"
        assert repos.contributions.get(contribution.id).contribution_status == "Refunded"

    def test_cancel_subscription(self, client, repos, fake_square):
        recur = repos.recurring.create(
            RecurringContribution(contact_id=7, amount=Decimal("25"), processor_id="SUB_1", contribution_status="Active")
        )
        fake_square.add_subscription(id="SUB_1")

        response = client.post("/api/v1/subscriptions/SUB_1/cancel")

        assert response.status_code == 200
        assert response.json()["outcome"] == "updated"
        assert fake_square.subscriptions["SUB_1"]["status"] == "CANCELED"
        assert repos.recurring.get(recur.id).contribution_status == "Cancelled"

    def test_sync_subscription(self, client, repos, fake_square):
        recur = repos.recurring.create(
            RecurringContribution(contact_id=7, amount=Decimal("25"), processor_id="SUB_1", contribution_status="Pending")
        )
        fake_square.add_subscription(id="SUB_1", status="ACTIVE", price_override_money={"amount": 3000, "currency": "USD"})

        response = client.post("/api/v1/subscriptions/SUB_1/sync")

        assert response.json() == {"outcome": "updated", "record_id": recur.id, "reason": None}
        updated = repos.recurring.get(recur.id)
        assert updated.contribution_status == "Active"
        assert updated.amount == Decimal("30.00")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (CardDeclinedError(400, message="declined"), 402),
            (RefundRejectedError(200, message="rejected"), 502),
            (ProtocolError(503), 502),
            (DecodeError("bad"), 502),
            (UnsupportedCadenceError("month", 5), 400),
            (ConflictError(7, "CUST_1", 8), 409),
            (SquareSyncError("other"), 500),
        ],
    )
    def test_status_for(self, exc, expected):
        assert status_for(exc) == expected
