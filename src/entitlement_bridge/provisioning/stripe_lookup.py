"""Stripe API lookups that fill in what an event payload leaves out."""

import logging
from typing import Any, Optional

import stripe

from entitlement_bridge.common.config import BridgeSettings
from entitlement_bridge.common.exceptions import UpstreamApiError
from entitlement_bridge.provisioning.schemas import EventVariant, VerifiedEvent

logger = logging.getLogger(__name__)


class StripeLookup:
    """Expands references in Stripe event payloads.

    Schedule events only carry a customer ID, so the customer is fetched for
    its email and name. Checkout sessions arrive without ``line_items`` and
    with ``subscription`` as an ID unless they are re-retrieved with
    ``expand``.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        client: Optional[Any] = None,
    ):
        # Only a client built here is owned, and closed, by this lookup
        self._http_client: Optional[stripe.HTTPXClient] = None
        if client is None:
            self._http_client = stripe.HTTPXClient(timeout=timeout)
            client = stripe.StripeClient(api_key, http_client=self._http_client)
        self._client = client

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> Optional["StripeLookup"]:
        if not settings.stripe_secret_key:
            return None
        return cls(settings.stripe_secret_key, timeout=settings.http_timeout)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.close_async()
            self._http_client = None

    async def fetch_customer(self, customer_id: str) -> dict[str, Any]:
        try:
            customer = await self._client.customers.retrieve_async(customer_id)
        except stripe.StripeError as e:
            raise UpstreamApiError(
                "stripe_customer_retrieve", e.http_status, e.user_message or str(e),
            ) from e
        return customer.to_dict()

    async def fetch_checkout_session(self, session_id: str) -> dict[str, Any]:
        try:
            session = await self._client.checkout.sessions.retrieve_async(
                session_id,
                params={"expand": ["line_items", "subscription"]},
            )
        except stripe.StripeError as e:
            raise UpstreamApiError(
                "stripe_checkout_session_retrieve", e.http_status, e.user_message or str(e),
            ) from e
        return session.to_dict()

    async def enrich(self, event: VerifiedEvent, variant: EventVariant) -> VerifiedEvent:
        """Return ``event`` with referenced objects expanded where needed."""
        payload = event.payload

        if variant is EventVariant.SUBSCRIPTION_SCHEDULE:
            customer_id = payload.get("customer")
            if isinstance(customer_id, str) and customer_id:
                logger.info("Retrieving Stripe customer %s", customer_id,
                            extra={"event_id": event.id})
                customer = await self.fetch_customer(customer_id)
                return event.model_copy(update={"payload": {**payload, "customer": customer}})

        elif variant is EventVariant.CHECKOUT_SESSION:
            session_id = payload.get("id")
            needs_expand = (
                not payload.get("line_items")
                or not isinstance(payload.get("subscription"), dict)
            )
            if needs_expand and isinstance(session_id, str) and session_id:
                logger.info("Retrieving Stripe checkout session %s", session_id,
                            extra={"event_id": event.id})
                session = await self.fetch_checkout_session(session_id)
                return event.model_copy(update={"payload": {**payload, **session}})

        return event
