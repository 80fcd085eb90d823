"""ProvisioningService: turns a verified Stripe event into a Frontegg entitlement."""

import hashlib
import logging
import re
from typing import Optional

from entitlement_bridge.common.config import BridgeSettings
from entitlement_bridge.common.exceptions import (
    ExtractionError,
    PlanMappingMissingError,
    UpstreamApiError,
)
from entitlement_bridge.provisioning.frontegg_client import FronteggClient
from entitlement_bridge.provisioning.plans import PlanResolver
from entitlement_bridge.provisioning.schemas import (
    EventVariant,
    IdentityUser,
    LookupStatus,
    ProvisioningRequest,
    ProvisioningResult,
    VerifiedEvent,
    WebhookAck,
)
from entitlement_bridge.provisioning.stripe_lookup import StripeLookup
from entitlement_bridge.provisioning.stripe_webhook import extract_provisioning_request

logger = logging.getLogger(__name__)

MAPPING_ERROR = "Internal mapping error"


def tenant_id_for_email(email: str) -> str:
    """Deterministic tenant ID, so a redelivered event targets the same tenant."""
    normalized = email.strip().lower()
    slug = re.sub(r"[^a-z0-9]", "_", normalized)[:48]
    digest = hashlib.sha256(normalized.encode()).hexdigest()[:12]
    return f"tenant_{slug}_{digest}"


class ProvisioningService:
    """Orchestrates tenant + user + entitlement creation from Stripe events."""

    def __init__(
        self,
        settings: BridgeSettings,
        plan_resolver: PlanResolver,
        frontegg_client: FronteggClient,
        stripe_lookup: Optional[StripeLookup] = None,
    ):
        self.settings = settings
        self.variant = EventVariant(settings.event_variant)
        self.plans = plan_resolver
        self.frontegg = frontegg_client
        self.stripe_lookup = stripe_lookup

    def resolve_feature(self, request: ProvisioningRequest) -> str:
        feature_id = self.plans.resolve(request.price_id)
        if feature_id is None:
            raise PlanMappingMissingError(request.price_id)
        return feature_id

    async def handle_event(self, event: VerifiedEvent) -> WebhookAck:
        """Process one verified event.

        Data and configuration gaps are acknowledged with an error string so
        Stripe does not redeliver. ``AuthFailureError`` and
        ``UpstreamApiError`` propagate; the caller answers 500 and Stripe
        retries.
        """
        if event.type != self.variant.event_type:
            logger.debug("Ignoring Stripe event type: %s", event.type)
            return WebhookAck()

        if self.stripe_lookup is not None:
            event = await self.stripe_lookup.enrich(event, self.variant)

        try:
            request = extract_provisioning_request(event, self.variant)
        except ExtractionError as e:
            logger.error(
                "Cannot provision from Stripe event: %s", e.reason,
                extra={"event_id": event.id, "event_type": event.type},
            )
            return WebhookAck(error=e.reason)

        try:
            feature_id = self.resolve_feature(request)
        except PlanMappingMissingError as e:
            logger.error(
                "No Frontegg feature ID found for Stripe price ID: %s", e.price_id,
                extra={"event_id": event.id, "price_id": e.price_id},
            )
            return WebhookAck(error=MAPPING_ERROR)

        logger.info(
            "Using expiration date %s (from %s)",
            request.expiration_date,
            request.expiry_source,
            extra={"event_id": event.id},
        )
        await self.provision(request, feature_id)
        return WebhookAck()

    async def provision(
        self,
        request: ProvisioningRequest,
        feature_id: str,
    ) -> ProvisioningResult:
        """Find or create the Frontegg user for ``request`` and entitle it.

        Steps:
        1. Vendor token
        2. Look up the user by email
        3. If absent, create account (tenant) then user
        4. Create the entitlement
        """
        token = await self.frontegg.get_vendor_token()

        lookup = await self.frontegg.get_user_by_email(request.email, token)
        created_account = created_user = False

        if lookup.status is LookupStatus.FOUND:
            user = lookup.user
            logger.info("User %s found", request.email,
                        extra={"tenant_id": user.tenant_id, "user_id": user.id})
        elif lookup.status is LookupStatus.NOT_FOUND:
            logger.info("User %s not found, creating new account", request.email)
            user, created_account, created_user = await self._create_account_and_user(
                request, token,
            )
        else:
            raise lookup.error

        entitlement = await self.frontegg.create_entitlement(
            user.tenant_id,
            user.id,
            feature_id,
            request.expiration_date,
            token,
        )
        logger.info(
            "Created entitlement",
            extra={
                "event_id": request.event_id,
                "tenant_id": user.tenant_id,
                "user_id": user.id,
                "feature_id": feature_id,
            },
        )

        return ProvisioningResult(
            tenant_id=user.tenant_id,
            user_id=user.id,
            entitlement=entitlement,
            created_account=created_account,
            created_user=created_user,
        )

    async def _create_account_and_user(
        self,
        request: ProvisioningRequest,
        token: str,
    ) -> tuple[IdentityUser, bool, bool]:
        account = await self.frontegg.create_account(
            tenant_id_for_email(request.email),
            f"{request.email}'s Account",
            token,
        )
        logger.info("Account ready", extra={"tenant_id": account.tenant_id})

        user = await self.frontegg.create_user(
            request.email,
            request.display_name,
            account.tenant_id,
            token,
        )
        if user is not None:
            logger.info("Created user", extra={"tenant_id": user.tenant_id, "user_id": user.id})
            return user, account.created, True

        # A concurrent delivery created the user between lookup and create.
        lookup = await self.frontegg.get_user_by_email(request.email, token)
        if lookup.status is LookupStatus.FOUND:
            logger.info("User %s created concurrently, reusing it", request.email)
            return lookup.user, account.created, False
        raise lookup.error or UpstreamApiError(
            "create_user", 409, "user reported as existing but lookup found none",
        )
