"""Tests for the provider webhook endpoints."""

from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.config import settings
from app.core.errors import processing_error
from app.schemas.webhook import PAYOUT_CHANGED, SELLER_CHANGED
from app.services.collaborators.store_lookup import SqlStoreLookup
from app.services.settlement.service import SettlementService
from app.services.webhooks.pipeline import WebhookPipeline
from conftest import iso_now, make_event, sign


@pytest.fixture
def settlement(db_session, make_store):
    make_store("S1")
    return SettlementService(db_session, SqlStoreLookup(db_session)).create(
        "S1", "O1", Decimal("10000"), Decimal("0.20")
    )


def _post(client, path, body, signature=None):
    headers = {settings.webhook_signature_header: signature or sign(body)}
    return client.post(path, content=body, headers=headers)


def _payout_body(event_id="E1", **data):
    payload = {"orderId": "O1", "payoutId": "P1", "status": "COMPLETED"}
    payload.update(data)
    return make_event(PAYOUT_CHANGED, payload, event_id=event_id)


class TestPayoutWebhook:

    def test_applied_then_duplicate(self, client, settlement):
        body = _payout_body()

        first = _post(client, "/webhooks/payout-changed", body)
        assert first.status_code == 200
        assert first.text == "Payout status updated successfully"

        second = _post(client, "/webhooks/payout-changed", body)
        assert second.status_code == 409
        assert second.text == "Event already processed (duplicate)"

    def test_bad_signature(self, client, settlement):
        response = _post(client, "/webhooks/payout-changed", _payout_body(), signature="sha256=00")
        assert response.status_code == 401

    def test_wrong_endpoint_for_type(self, client, settlement):
        response = _post(client, "/webhooks/seller-changed", _payout_body())
        assert response.status_code == 400
        assert response.text == "Rejected: type mismatch"

    def test_stale_event(self, client, settlement):
        _post(client, "/webhooks/payout-changed", _payout_body("E1"))
        stale = make_event(
            PAYOUT_CHANGED,
            {"orderId": "O1", "payoutId": "P1", "status": "FAILED"},
            event_id="E2",
            timestamp=iso_now(-120),
        )
        response = _post(client, "/webhooks/payout-changed", stale)
        assert response.status_code == 409
        assert response.text == "Rejected: stale event"

    def test_late_redelivery_of_applied_event_is_duplicate(self, client, settlement):
        _post(client, "/webhooks/payout-changed", _payout_body("E1"))
        late = make_event(
            PAYOUT_CHANGED,
            {"orderId": "O1", "payoutId": "P1", "status": "COMPLETED"},
            event_id="E1",
            timestamp=iso_now(-3600),
        )

        response = _post(client, "/webhooks/payout-changed", late)

        assert response.status_code == 409
        assert response.text == "Event already processed (duplicate)"

    def test_delivery_latency_does_not_reject_next_event(self, client, settlement):
        processing = make_event(
            PAYOUT_CHANGED,
            {"orderId": "O1", "payoutId": "P1", "status": "PROCESSING"},
            event_id="E1",
            timestamp=iso_now(-4),
        )
        completed = make_event(
            PAYOUT_CHANGED,
            {"orderId": "O1", "payoutId": "P1", "status": "COMPLETED"},
            event_id="E2",
            timestamp=iso_now(-3),
        )

        assert _post(client, "/webhooks/payout-changed", processing).status_code == 200
        assert _post(client, "/webhooks/payout-changed", completed).status_code == 200
        stored = client.get(f"/api/v1/settlements/{settlement.id}").json()
        assert stored["status"] == "COMPLETED"

    def test_unknown_order(self, client, settlement):
        response = _post(client, "/webhooks/payout-changed", _payout_body(orderId="nope"))
        assert response.status_code == 409
        assert response.text == "Rejected: unknown target"

    def test_processing_failure_asks_for_redelivery(self, client, settlement, monkeypatch):
        def explode(self, event, event_time):
            raise processing_error("disk full", stage="database_save")

        monkeypatch.setattr(WebhookPipeline, "_consume", explode)
        response = _post(client, "/webhooks/payout-changed", _payout_body())
        assert response.status_code == 503
        assert response.text.startswith("Failed to process payout webhook:")
        assert "disk full" not in response.text


class TestSellerWebhook:

    def test_seller_approved(self, client, make_store):
        make_store("S2")
        client.post("/api/v1/sellers", json={"store_id": "S2", "business_type": "CORPORATE"})
        body = make_event(
            SELLER_CHANGED,
            {"refSellerId": "S2", "sellerId": "PS2", "status": "APPROVED"},
            event_id="SE1",
        )

        response = _post(client, "/webhooks/seller-changed", body)

        assert response.status_code == 200
        assert response.text == "Seller status updated successfully"
        seller = client.get("/api/v1/sellers/S2").json()
        assert seller["status"] == "APPROVED"
        assert seller["payout_eligible"] is True

    def test_approval_pays_pending_settlements(self, client, make_store, provider):
        make_store("S2")
        client.post("/api/v1/sellers", json={"store_id": "S2", "business_type": "CORPORATE"})
        created = client.post(
            "/api/v1/settlements",
            json={"store_id": "S2", "order_id": "O9", "amount": "500.00", "fee_rate": "0.20"},
        ).json()
        body = make_event(
            SELLER_CHANGED,
            {"refSellerId": "S2", "sellerId": "PS2", "status": "APPROVED"},
            event_id="SE1",
        )

        response = _post(client, "/webhooks/seller-changed", body)

        assert response.status_code == 200
        stored = client.get(f"/api/v1/settlements/{created['id']}").json()
        assert stored["status"] == "COMPLETED"
        assert provider.payout_calls == [("PS2", Decimal("400.00"), f"settlement-{created['id']}")]
