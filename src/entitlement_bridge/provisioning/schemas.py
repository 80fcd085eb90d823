"""Pydantic schemas for provisioning webhook payloads."""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from entitlement_bridge.common.exceptions import UpstreamApiError

DEFAULT_DISPLAY_NAME = "New User"


class EventVariant(str, enum.Enum):
    """Which Stripe event shape a deployment provisions from."""

    CHECKOUT_SESSION = "checkout_session"
    SUBSCRIPTION_SCHEDULE = "subscription_schedule"

    @property
    def event_type(self) -> str:
        return {
            EventVariant.CHECKOUT_SESSION: "checkout.session.completed",
            EventVariant.SUBSCRIPTION_SCHEDULE: "subscription_schedule.created",
        }[self]


class VerifiedEvent(BaseModel):
    """A Stripe event whose signature has been checked."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    type: str
    created: Optional[int] = None
    livemode: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)


class ProvisioningRequest(BaseModel):
    """Canonical purchase to provision, independent of the event shape."""

    email: str = Field(..., min_length=1)
    display_name: str = DEFAULT_DISPLAY_NAME
    price_id: str = Field(..., min_length=1)
    expires_at: datetime
    expiry_source: str = ""
    stripe_customer_id: Optional[str] = None
    event_id: str = ""

    @field_validator("display_name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return value or DEFAULT_DISPLAY_NAME

    @property
    def expiration_date(self) -> str:
        return to_iso8601(self.expires_at)


class WebhookAck(BaseModel):
    """Body returned to Stripe on a 200 acknowledgment."""

    received: bool = True
    error: Optional[str] = None


def to_iso8601(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def from_unix(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


# ── Frontegg entities ──


@dataclass
class IdentityUser:
    id: str
    tenant_id: str
    email: str = ""


@dataclass
class IdentityAccount:
    tenant_id: str
    name: str = ""
    created: bool = True


@dataclass
class Entitlement:
    tenant_id: str
    user_id: str
    feature_id: str
    expiration_date: str


class LookupStatus(str, enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class UserLookup:
    """Outcome of a get-user-by-email call."""

    status: LookupStatus
    user: Optional[IdentityUser] = None
    error: Optional[UpstreamApiError] = None

    @classmethod
    def found(cls, user: IdentityUser) -> "UserLookup":
        return cls(LookupStatus.FOUND, user=user)

    @classmethod
    def not_found(cls) -> "UserLookup":
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: UpstreamApiError) -> "UserLookup":
        return cls(LookupStatus.FAILED, error=error)


@dataclass
class ProvisioningResult:
    """What the upsert flow did for one request."""

    tenant_id: str
    user_id: str
    entitlement: Entitlement
    created_account: bool = False
    created_user: bool = False
