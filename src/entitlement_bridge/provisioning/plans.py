"""Stripe price ID to Frontegg feature ID resolution."""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Optional

from entitlement_bridge.common.config import BridgeSettings


class PlanResolver:
    """Read-only lookup over a price-to-feature table."""

    def __init__(self, mapping: Mapping[str, str] | None = None):
        self._plans: Mapping[str, str] = MappingProxyType(dict(mapping or {}))

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "PlanResolver":
        return cls(settings.plan_map)

    @property
    def plans(self) -> Mapping[str, str]:
        return self._plans

    def resolve(self, price_id: Any) -> Optional[str]:
        """Return the feature ID for ``price_id``, or None when unmapped."""
        if not isinstance(price_id, str) or not price_id:
            return None
        return self._plans.get(price_id) or None

    def __contains__(self, price_id: object) -> bool:
        return self.resolve(price_id) is not None

    def __len__(self) -> int:
        return len(self._plans)
