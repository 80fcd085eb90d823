"""Entitlement-Bridge configuration via pydantic-settings."""

import warnings
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_REQUIRED_SECRETS = (
    "stripe_webhook_secret",
    "frontegg_client_id",
    "frontegg_api_key",
)


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BRIDGE_")

    environment: str = "development"

    # Stripe
    stripe_webhook_secret: str = ""
    stripe_signature_tolerance: int = 300  # seconds, 0 disables the check
    # Optional: enables customer / checkout session lookups against the Stripe API
    stripe_secret_key: str = ""
    event_variant: Literal["checkout_session", "subscription_schedule"] = "checkout_session"

    # Frontegg
    frontegg_base_url: str = "https://api.frontegg.com"
    frontegg_client_id: str = ""
    frontegg_api_key: str = ""
    frontegg_role_ids: list[str] = []

    # Stripe price ID -> Frontegg feature ID, JSON object in the environment.
    # e.g. '{"price_1SMf0e...": "f5fec7df-..."}'
    plan_map: dict[str, str] = {}

    # Upper bound for every outbound call
    http_timeout: float = 10.0

    # API
    api_title: str = "Entitlement-Bridge"
    api_version: str = "0.1.0"
    api_prefix: str = ""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    def validate_for_production(self) -> None:
        """Raise if secrets are missing in non-development environments."""
        missing = [field for field in _REQUIRED_SECRETS if not getattr(self, field)]
        # Schedule payloads only carry a customer ID; the email needs a Stripe lookup.
        if self.event_variant == "subscription_schedule" and not self.stripe_secret_key:
            missing.append("stripe_secret_key")
        env_vars = ", ".join(f"BRIDGE_{f.upper()}" for f in missing)

        if self.environment != "development" and missing:
            raise RuntimeError(
                f"Missing configuration in '{self.environment}' environment. "
                f"Set these environment variables: {env_vars}."
            )

        if missing:
            warnings.warn(
                f"Required settings not set; set {env_vars} for production",
                UserWarning,
                stacklevel=2,
            )

        if not self.plan_map:
            warnings.warn(
                "BRIDGE_PLAN_MAP is empty; every purchase will be acknowledged "
                "with a mapping error",
                UserWarning,
                stacklevel=2,
            )

        if not self.frontegg_role_ids:
            warnings.warn(
                "BRIDGE_FRONTEGG_ROLE_IDS is empty; new users will be created "
                "without a role",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> BridgeSettings:
    settings = BridgeSettings()
    settings.validate_for_production()
    return settings
