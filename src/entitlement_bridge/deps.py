"""Dependency injection singletons for Entitlement-Bridge."""

from typing import Optional

from entitlement_bridge.common.config import get_settings
from entitlement_bridge.provisioning.frontegg_client import FronteggClient
from entitlement_bridge.provisioning.plans import PlanResolver
from entitlement_bridge.provisioning.service import ProvisioningService
from entitlement_bridge.provisioning.stripe_lookup import StripeLookup

_plan_resolver: PlanResolver | None = None
_frontegg: FronteggClient | None = None
_stripe_lookup: StripeLookup | None = None
_stripe_lookup_loaded = False
_provisioning: ProvisioningService | None = None


def get_plan_resolver() -> PlanResolver:
    global _plan_resolver
    if _plan_resolver is None:
        _plan_resolver = PlanResolver.from_settings(get_settings())
    return _plan_resolver


def get_frontegg_client() -> FronteggClient:
    global _frontegg
    if _frontegg is None:
        _frontegg = FronteggClient.from_settings(get_settings())
    return _frontegg


def get_stripe_lookup() -> Optional[StripeLookup]:
    global _stripe_lookup, _stripe_lookup_loaded
    if not _stripe_lookup_loaded:
        _stripe_lookup = StripeLookup.from_settings(get_settings())
        _stripe_lookup_loaded = True
    return _stripe_lookup


def get_provisioning_service() -> ProvisioningService:
    global _provisioning
    if _provisioning is None:
        _provisioning = ProvisioningService(
            get_settings(),
            get_plan_resolver(),
            get_frontegg_client(),
            stripe_lookup=get_stripe_lookup(),
        )
    return _provisioning


async def close_clients() -> None:
    if _frontegg is not None:
        await _frontegg.aclose()
    if _stripe_lookup is not None:
        await _stripe_lookup.aclose()


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _plan_resolver, _frontegg, _stripe_lookup, _stripe_lookup_loaded, _provisioning
    _plan_resolver = None
    _frontegg = None
    _stripe_lookup = None
    _stripe_lookup_loaded = False
    _provisioning = None
