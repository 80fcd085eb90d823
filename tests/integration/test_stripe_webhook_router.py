"""Integration tests for the Stripe webhook endpoint."""

from unittest.mock import AsyncMock

import pytest

from entitlement_bridge.common.exceptions import PlanMappingMissingError
from entitlement_bridge.provisioning.service import tenant_id_for_email
from entitlement_bridge.provisioning.stripe_webhook import sign_stripe_payload
from tests.conftest import FEATURE_ID, WEBHOOK_SECRET, checkout_event, encode, schedule_event


async def _post(client, event: dict, secret: str = WEBHOOK_SECRET, body: bytes | None = None):
    body = body if body is not None else encode(event)
    return await client.post(
        "/webhooks/stripe",
        content=body,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": sign_stripe_payload(body, secret),
        },
    )


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["event_type"] == "checkout.session.completed"


class TestStripeWebhook:
    async def test_new_customer_provisioned(self, client, frontegg):
        resp = await _post(client, checkout_event())

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        assert frontegg.count("create_account") == 1
        assert frontegg.count("create_user") == 1
        assert frontegg.count("create_entitlement") == 1
        tenant_id = tenant_id_for_email("a@x.com")
        assert frontegg.users["a@x.com"]["tenantId"] == tenant_id
        assert frontegg.entitlements[0]["tenantId"] == tenant_id
        assert frontegg.entitlements[0]["featureId"] == FEATURE_ID
        assert frontegg.entitlements[0]["expirationDate"] == "2026-01-01T00:00:00.000Z"

    async def test_existing_customer_only_entitled(self, client, frontegg):
        frontegg.add_user("a@x.com", user_id="u-1", tenant_id="t-1")

        resp = await _post(client, checkout_event())

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        assert frontegg.count("create_account") == 0
        assert frontegg.count("create_user") == 0
        assert frontegg.entitlements == [{
            "tenantId": "t-1",
            "userId": "u-1",
            "featureId": FEATURE_ID,
            "expirationDate": "2026-01-01T00:00:00.000Z",
        }]

    async def test_unknown_price_acknowledged_without_calls(self, client, frontegg):
        event = checkout_event(line_items=[{"price": {"id": "price_unknown"}}])

        resp = await _post(client, event)

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "error": "Internal mapping error"}
        assert frontegg.calls == []

    async def test_invalid_signature_rejected(self, client, frontegg):
        resp = await _post(client, checkout_event(), secret="whsec_wrong")

        assert resp.status_code == 400
        assert resp.json() == {"error": "Webhook Error: Signature verification failed"}
        assert frontegg.calls == []

    async def test_missing_signature_rejected(self, client, frontegg):
        resp = await client.post("/webhooks/stripe", content=encode(checkout_event()))
        assert resp.status_code == 400
        assert frontegg.calls == []

    async def test_tampered_body_rejected(self, client, frontegg):
        body = encode(checkout_event())
        header = sign_stripe_payload(body, WEBHOOK_SECRET)
        tampered = body.replace(b"a@x.com", b"z@x.com")

        resp = await client.post(
            "/webhooks/stripe", content=tampered, headers={"Stripe-Signature": header},
        )

        assert resp.status_code == 400
        assert frontegg.calls == []

    async def test_entitlement_failure_returns_500(self, client, frontegg):
        frontegg.failures["create_entitlement"] = 500

        resp = await _post(client, checkout_event())

        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to sync with Frontegg"}
        assert frontegg.count("create_account") == 1
        assert frontegg.count("create_user") == 1

    async def test_auth_failure_returns_500(self, client, frontegg):
        frontegg.failures["authenticate"] = 401

        resp = await _post(client, checkout_event())

        assert resp.status_code == 500
        assert frontegg.calls == ["authenticate"]

    async def test_non_retryable_error_acknowledged(self, client, provisioning_service, monkeypatch):
        monkeypatch.setattr(
            provisioning_service, "handle_event",
            AsyncMock(side_effect=PlanMappingMissingError("price_x")),
        )

        resp = await _post(client, checkout_event())

        assert resp.status_code == 200
        assert resp.json() == {
            "received": True,
            "error": "No feature ID configured for price ID: price_x",
        }

    async def test_redelivery_after_failure_succeeds(self, client, frontegg):
        frontegg.failures["create_entitlement"] = 500
        assert (await _post(client, checkout_event())).status_code == 500

        del frontegg.failures["create_entitlement"]
        resp = await _post(client, checkout_event())

        assert resp.status_code == 200
        assert frontegg.count("create_account") == 1
        assert len(frontegg.tenants) == 1
        assert len(frontegg.entitlements) == 1

    async def test_malformed_event_acknowledged(self, client, frontegg):
        resp = await _post(client, checkout_event(customer_details=None))

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "error": "No customer details found"}
        assert frontegg.calls == []

    async def test_out_of_range_expiry_acknowledged(self, client, frontegg):
        event = checkout_event(subscription={"id": "sub_123", "current_period_end": 10**13})
        resp = await _post(client, event)

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "error": "No expiration date found"}
        assert frontegg.calls == []

    async def test_unhandled_event_type_acknowledged(self, client, frontegg):
        event = checkout_event()
        event["type"] = "invoice.paid"

        resp = await _post(client, event)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        assert frontegg.calls == []

    async def test_signed_garbage_rejected(self, client, frontegg):
        resp = await _post(client, {}, body=b"not-json")
        assert resp.status_code == 400

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH"])
    async def test_wrong_method(self, client, frontegg, method):
        resp = await client.request(method, "/webhooks/stripe")

        assert resp.status_code == 405
        assert resp.headers["allow"] == "POST"
        assert frontegg.calls == []


class TestScheduleDeployment:
    @pytest.fixture
    def event_variant(self):
        return "subscription_schedule"

    async def test_schedule_provisioned(self, client, frontegg):
        resp = await _post(client, schedule_event())

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        assert frontegg.users["s@x.com"]["name"] == "Sam Buyer"

    async def test_schedule_cancel_at_used(self, client, frontegg):
        resp = await _post(client, schedule_event(cancel_at=1769904000))

        assert resp.status_code == 200
        assert frontegg.entitlements[0]["expirationDate"] == "2026-02-01T00:00:00.000Z"

    async def test_schedule_without_items(self, client, frontegg):
        event = schedule_event(phases=[{"end_date": 1767225600, "items": []}])

        resp = await _post(client, event)

        assert resp.json() == {"received": True, "error": "No items found in phase"}
        assert frontegg.calls == []

    async def test_checkout_events_ignored(self, client, frontegg):
        resp = await _post(client, checkout_event())

        assert resp.status_code == 200
        assert frontegg.calls == []

    async def test_health_reports_event_type(self, client):
        resp = await client.get("/health")
        assert resp.json()["event_type"] == "subscription_schedule.created"
