"""Entitlement-Bridge: provisions Frontegg entitlements from Stripe purchases."""

from entitlement_bridge.provisioning.plans import PlanResolver
from entitlement_bridge.provisioning.stripe_webhook import (
    construct_event,
    extract_provisioning_request,
    sign_stripe_payload,
    verify_stripe_signature,
)

__all__ = [
    "PlanResolver",
    "construct_event",
    "extract_provisioning_request",
    "sign_stripe_payload",
    "verify_stripe_signature",
]
__version__ = "0.1.0"
