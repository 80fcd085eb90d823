"""Stripe webhook endpoint."""

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from entitlement_bridge.common.exceptions import (
    BridgeError,
    SignatureInvalidError,
    is_retryable,
)
from entitlement_bridge.common.schemas import ErrorResponse
from entitlement_bridge.deps import get_provisioning_service
from entitlement_bridge.provisioning.schemas import WebhookAck
from entitlement_bridge.provisioning.service import ProvisioningService
from entitlement_bridge.provisioning.stripe_webhook import construct_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["provisioning"])

# Registered for every method so non-POST requests get a 405 from the handler.
_ACCEPTED_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


def _error(status_code: int, message: str, **headers: str) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=message).model_dump(),
        status_code=status_code,
        headers=headers or None,
    )


@router.api_route(
    "/stripe",
    methods=_ACCEPTED_METHODS,
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        405: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """Handle a Stripe purchase webhook.

    200 acknowledges (with ``error`` set for data or mapping gaps Stripe
    cannot fix by retrying), 400 rejects a bad signature, 500 asks Stripe
    to redeliver.
    """
    if request.method != "POST":
        return _error(405, "Method Not Allowed", Allow="POST")

    # Raw bytes: the signature covers the body exactly as sent.
    body = await request.body()
    settings = service.settings

    try:
        event = construct_event(
            body,
            stripe_signature,
            settings.stripe_webhook_secret,
            settings.stripe_signature_tolerance,
        )
    except SignatureInvalidError as e:
        logger.warning("Webhook signature verification failed: %s", e.message)
        return _error(400, "Webhook Error: Signature verification failed")

    try:
        return await service.handle_event(event)
    except BridgeError as e:
        log_extra = {"event_id": event.id, "event_type": event.type}
        if not is_retryable(e):
            # A redelivery would fail the same way
            logger.warning("Event not provisioned: %s", e.message, extra=log_extra)
            return WebhookAck(error=e.message)
        logger.exception("Frontegg sync failed", extra=log_extra)
        return _error(500, "Failed to sync with Frontegg")
