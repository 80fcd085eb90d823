"""Shared test fixtures for Entitlement-Bridge."""

import json
from typing import Any
from urllib.parse import unquote

import httpx
import pytest
from httpx import ASGITransport, AsyncClient


WEBHOOK_SECRET = "whsec_test_secret"
FRONTEGG_BASE_URL = "https://frontegg.test"
VENDOR_TOKEN = "vendor-token-123"
PRICE_ID = "price_basic_monthly"
FEATURE_ID = "feature-basic"
PLAN_MAP = {PRICE_ID: FEATURE_ID}

PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z
CANCEL_AT = 1769904000  # 2026-02-01T00:00:00Z


# ── Event builders ──


def checkout_event(**overrides: Any) -> dict[str, Any]:
    session = {
        "id": "cs_test_123",
        "object": "checkout.session",
        "customer": "cus_123",
        "customer_email": None,
        "customer_details": {"email": "a@x.com", "name": "Ada Buyer"},
        "line_items": {
            "object": "list",
            "data": [{"id": "li_1", "price": {"id": PRICE_ID}, "quantity": 1}],
        },
        "subscription": {"id": "sub_123", "current_period_end": PERIOD_END},
    }
    session.update(overrides)
    return {
        "id": "evt_checkout_1",
        "object": "event",
        "type": "checkout.session.completed",
        "created": 1700000000,
        "livemode": False,
        "data": {"object": session},
    }


def schedule_event(**overrides: Any) -> dict[str, Any]:
    schedule = {
        "id": "sub_sched_123",
        "object": "subscription_schedule",
        "customer": {"id": "cus_456", "email": "s@x.com", "name": "Sam Buyer"},
        "phases": [
            {
                "start_date": 1764547200,
                "end_date": PERIOD_END,
                "items": [{"price": PRICE_ID, "quantity": 1}],
            }
        ],
        "current_phase": {"start_date": 1764547200, "end_date": PERIOD_END},
        "cancel_at": None,
        "canceled_at": None,
    }
    schedule.update(overrides)
    return {
        "id": "evt_schedule_1",
        "object": "event",
        "type": "subscription_schedule.created",
        "created": 1700000000,
        "livemode": False,
        "data": {"object": schedule},
    }


def encode(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode()


# ── Fake Frontegg ──


class FakeFrontegg:
    """In-memory stand-in for the Frontegg vendor API, served via httpx.MockTransport."""

    def __init__(self):
        self.users: dict[str, dict[str, Any]] = {}
        self.tenants: dict[str, dict[str, Any]] = {}
        self.entitlements: list[dict[str, Any]] = []
        self.calls: list[str] = []
        # operation -> status code to fail with
        self.failures: dict[str, int] = {}

    def add_user(self, email: str, user_id: str = "user-existing", tenant_id: str = "tenant-existing"):
        self.users[email] = {"id": user_id, "tenantId": tenant_id, "email": email}
        self.tenants.setdefault(tenant_id, {"tenantId": tenant_id, "name": email})

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/vendor":
            operation = "authenticate"
        elif path.startswith("/identity/v1/users/email/"):
            operation = "get_user_by_email"
        elif path == "/tenants/resources/tenants/v1":
            operation = "create_account"
        elif path == "/identity/resources/users/v2":
            operation = "create_user"
        elif path == "/entitlements/resources/entitlements/v2":
            operation = "create_entitlement"
        else:
            return httpx.Response(404, json={"message": "no route"})
        self.calls.append(operation)

        if operation in self.failures:
            return httpx.Response(self.failures[operation], json={"errors": [f"{operation} failed"]})

        if operation == "authenticate":
            body = json.loads(request.content)
            if body.get("clientId") != "client-id" or body.get("secret") != "api-key":
                return httpx.Response(401, json={"errors": ["Unauthorized"]})
            return httpx.Response(200, json={"token": VENDOR_TOKEN, "expiresIn": 86400})

        if request.headers.get("Authorization") != f"Bearer {VENDOR_TOKEN}":
            return httpx.Response(401, json={"errors": ["Unauthorized"]})

        if operation == "get_user_by_email":
            email = unquote(path.rsplit("/", 1)[-1])
            user = self.users.get(email)
            if user is None:
                return httpx.Response(404, json={"errors": ["User not found"]})
            return httpx.Response(200, json=user)

        body = json.loads(request.content)

        if operation == "create_account":
            if body["tenantId"] in self.tenants:
                return httpx.Response(409, json={"errors": ["Tenant already exists"]})
            self.tenants[body["tenantId"]] = body
            return httpx.Response(201, json={**body, "id": "acc-1"})

        if operation == "create_user":
            tenant_id = request.headers.get("frontegg-tenant-id")
            if body["email"] in self.users:
                return httpx.Response(409, json={"errors": ["User already exists"]})
            user = {"id": f"user-{len(self.users) + 1}", "tenantId": tenant_id, **body}
            self.users[body["email"]] = user
            return httpx.Response(201, json=user)

        self.entitlements.append(body)
        return httpx.Response(201, json={"id": f"ent-{len(self.entitlements)}"})


# ── Fixtures ──


@pytest.fixture
def frontegg():
    return FakeFrontegg()


@pytest.fixture
def event_variant():
    return "checkout_session"


@pytest.fixture
def settings(event_variant, monkeypatch):
    monkeypatch.setenv("BRIDGE_STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("BRIDGE_FRONTEGG_BASE_URL", FRONTEGG_BASE_URL)
    monkeypatch.setenv("BRIDGE_FRONTEGG_CLIENT_ID", "client-id")
    monkeypatch.setenv("BRIDGE_FRONTEGG_API_KEY", "api-key")
    monkeypatch.setenv("BRIDGE_FRONTEGG_ROLE_IDS", json.dumps(["role-admin"]))
    monkeypatch.setenv("BRIDGE_PLAN_MAP", json.dumps(PLAN_MAP))
    monkeypatch.setenv("BRIDGE_EVENT_VARIANT", event_variant)
    monkeypatch.delenv("BRIDGE_STRIPE_SECRET_KEY", raising=False)

    # Clear caches and singletons so new env vars take effect
    from entitlement_bridge.common.config import get_settings
    get_settings.cache_clear()

    from entitlement_bridge.deps import reset_singletons
    reset_singletons()

    return get_settings()


@pytest.fixture
async def frontegg_client(settings, frontegg):
    from entitlement_bridge.provisioning.frontegg_client import FronteggClient
    client = FronteggClient.from_settings(settings, transport=frontegg.transport)
    yield client
    await client.aclose()


@pytest.fixture
def provisioning_service(settings, frontegg_client):
    from entitlement_bridge.provisioning.plans import PlanResolver
    from entitlement_bridge.provisioning.service import ProvisioningService
    return ProvisioningService(settings, PlanResolver.from_settings(settings), frontegg_client)


@pytest.fixture
def app(settings, provisioning_service):
    from entitlement_bridge.app import create_app
    from entitlement_bridge.deps import get_provisioning_service

    application = create_app()
    application.dependency_overrides[get_provisioning_service] = lambda: provisioning_service
    return application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
