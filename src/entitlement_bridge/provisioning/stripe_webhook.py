"""Stripe webhook verification and event normalization.

Two event shapes carry a purchase:

- ``checkout.session.completed``: buyer in ``customer_details``, price in
  ``line_items``, expiry on the expanded ``subscription``.
- ``subscription_schedule.created``: buyer on the expanded ``customer``,
  price in ``phases[0].items[0]``, expiry on the schedule or its phases.

Both are reduced to one ``ProvisioningRequest``. Expiry precedence is the
same for both: ``cancel_at`` > ``canceled_at`` > the period/phase end date.
"""

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from entitlement_bridge.common.exceptions import ExtractionError, SignatureInvalidError
from entitlement_bridge.provisioning.schemas import (
    EventVariant,
    ProvisioningRequest,
    VerifiedEvent,
    from_unix,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300


def _compute_signature(timestamp: str, payload: bytes, webhook_secret: str) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(
        webhook_secret.encode(),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def sign_stripe_payload(
    payload: bytes,
    webhook_secret: str,
    timestamp: Optional[int] = None,
) -> str:
    """Build a ``Stripe-Signature`` header value for a payload."""
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={ts},v1={_compute_signature(ts, payload, webhook_secret)}"


def verify_stripe_signature(
    payload: bytes,
    signature_header: str,
    webhook_secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> bool:
    """Verify Stripe webhook signature (v1 scheme).

    Stripe sends: t=<timestamp>,v1=<signature>[,v1=<signature>...]
    Several v1 entries appear while a secret is being rolled; any match passes.
    """
    if not signature_header or not webhook_secret:
        return False

    timestamp = ""
    candidates = []
    for item in signature_header.split(","):
        key, _, value = item.partition("=")
        key = key.strip()
        if key == "t":
            timestamp = value.strip()
        elif key == "v1":
            candidates.append(value.strip())

    if not timestamp or not candidates:
        return False

    try:
        signed_at = int(timestamp)
    except ValueError:
        return False
    if tolerance > 0 and signed_at < time.time() - tolerance:
        logger.warning("Stripe signature timestamp outside tolerance")
        return False

    computed = _compute_signature(timestamp, payload, webhook_secret)
    return any(hmac.compare_digest(computed, sig) for sig in candidates)


def construct_event(
    payload: bytes,
    signature_header: str,
    webhook_secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> VerifiedEvent:
    """Verify the raw body and parse it into a ``VerifiedEvent``.

    ``payload`` must be the exact bytes received; a re-serialized body
    will not verify.
    """
    if not verify_stripe_signature(payload, signature_header, webhook_secret, tolerance):
        raise SignatureInvalidError()

    try:
        event_data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SignatureInvalidError("Signed payload is not valid JSON") from exc

    if not isinstance(event_data, dict) or not isinstance(event_data.get("type"), str):
        raise SignatureInvalidError("Signed payload is not a Stripe event")

    data = event_data.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None

    try:
        return VerifiedEvent(
            id=event_data.get("id") or "",
            type=event_data["type"],
            created=event_data.get("created"),
            livemode=bool(event_data.get("livemode", False)),
            payload=obj if isinstance(obj, dict) else {},
        )
    except ValidationError as exc:
        raise SignatureInvalidError("Signed payload is not a Stripe event") from exc


# ── Field extraction ──


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list_items(value: Any) -> list[Any]:
    """Accept both a plain list and a Stripe list object ``{"data": [...]}``."""
    if isinstance(value, dict):
        value = value.get("data")
    return value if isinstance(value, list) else []


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _price_id(item: Any) -> str:
    price = _as_dict(item).get("price")
    if isinstance(price, dict):
        price = price.get("id")
    return price if isinstance(price, str) else ""


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not value > 0:
        return None
    try:
        return from_unix(int(value))
    except (ValueError, OverflowError, OSError):
        # Outside the range datetime can represent
        return None


def select_expiry(candidates: list[tuple[str, Any]]) -> tuple[str, datetime]:
    """Return the first usable timestamp in precedence order."""
    for source, value in candidates:
        expires_at = _timestamp(value)
        if expires_at is not None:
            return source, expires_at
    raise ExtractionError("No expiration date found")


def extract_checkout_session(event: VerifiedEvent) -> ProvisioningRequest:
    """Normalize a ``checkout.session.completed`` payload."""
    session = event.payload
    customer_details = _as_dict(session.get("customer_details"))
    email = _text(customer_details.get("email")) or _text(session.get("customer_email"))

    if not customer_details and not email:
        raise ExtractionError("No customer details found")
    if not email:
        raise ExtractionError("No email provided")

    line_items = _list_items(session.get("line_items"))
    if not line_items:
        raise ExtractionError("No line items found")

    price_id = _price_id(line_items[0])
    if not price_id:
        raise ExtractionError("No price found on line item")

    subscription = _as_dict(session.get("subscription"))
    sub_items = _list_items(subscription.get("items"))
    source, expires_at = select_expiry([
        ("subscription.cancel_at", subscription.get("cancel_at")),
        ("subscription.canceled_at", subscription.get("canceled_at")),
        ("subscription.current_period_end", subscription.get("current_period_end")),
        (
            "subscription.items[0].current_period_end",
            _as_dict(sub_items[0]).get("current_period_end") if sub_items else None,
        ),
    ])

    customer = session.get("customer")
    customer_id = customer if isinstance(customer, str) else _as_dict(customer).get("id")
    return ProvisioningRequest(
        email=email,
        display_name=_text(customer_details.get("name")),
        price_id=price_id,
        expires_at=expires_at,
        expiry_source=source,
        stripe_customer_id=customer_id or None,
        event_id=event.id,
    )


def extract_subscription_schedule(event: VerifiedEvent) -> ProvisioningRequest:
    """Normalize a ``subscription_schedule.created`` payload.

    The customer must already be expanded to an object for the email to be
    found; ``StripeLookup`` does this when a Stripe API key is configured.
    """
    schedule = event.payload

    phases = _list_items(schedule.get("phases"))
    if not phases:
        raise ExtractionError("No phases found")

    first_phase = _as_dict(phases[0])
    items = _list_items(first_phase.get("items"))
    if not items:
        raise ExtractionError("No items found in phase")

    price_id = _price_id(items[0])
    if not price_id:
        raise ExtractionError("No price found on line item")

    customer = schedule.get("customer")
    customer_obj = _as_dict(customer)
    email = _text(customer_obj.get("email"))
    if not email:
        raise ExtractionError("No email provided")

    source, expires_at = select_expiry([
        ("cancel_at", schedule.get("cancel_at")),
        ("canceled_at", schedule.get("canceled_at")),
        ("current_phase.end_date", _as_dict(schedule.get("current_phase")).get("end_date")),
        ("phases[0].end_date", first_phase.get("end_date")),
    ])

    if isinstance(customer, str):
        customer_id = customer
    else:
        customer_id = _text(customer_obj.get("id")) or None

    return ProvisioningRequest(
        email=email,
        display_name=_text(customer_obj.get("name")),
        price_id=price_id,
        expires_at=expires_at,
        expiry_source=source,
        stripe_customer_id=customer_id,
        event_id=event.id,
    )


_EXTRACTORS = {
    EventVariant.CHECKOUT_SESSION: extract_checkout_session,
    EventVariant.SUBSCRIPTION_SCHEDULE: extract_subscription_schedule,
}


def extract_provisioning_request(
    event: VerifiedEvent,
    variant: EventVariant,
) -> ProvisioningRequest:
    """Build a ``ProvisioningRequest`` or raise ``ExtractionError``."""
    if event.type != variant.event_type:
        raise ExtractionError(f"Unhandled event type: {event.type}")
    return _EXTRACTORS[variant](event)
