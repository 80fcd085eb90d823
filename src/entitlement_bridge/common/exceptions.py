"""Entitlement-Bridge exception hierarchy."""

from typing import Optional


class BridgeError(Exception):
    """Base exception for all bridge errors."""

    retryable = False

    def __init__(self, message: str = "", code: str = "BRIDGE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class SignatureInvalidError(BridgeError):
    """Raised when a webhook payload fails signature verification."""

    def __init__(self, message: str = "Signature verification failed"):
        super().__init__(message, code="SIGNATURE_INVALID")


class ExtractionError(BridgeError):
    """Raised when an event payload lacks a required structure.

    ``reason`` is the short, stable string returned in the acknowledgment.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason, code="EXTRACTION_FAILED")


class PlanMappingMissingError(BridgeError):
    """Raised when a price ID has no configured feature."""

    def __init__(self, price_id: str):
        self.price_id = price_id
        super().__init__(
            f"No feature ID configured for price ID: {price_id}",
            code="PLAN_MAPPING_MISSING",
        )


class AuthFailureError(BridgeError):
    """Raised when the vendor credential exchange fails."""

    retryable = True

    def __init__(self, message: str = "Could not authenticate with Frontegg"):
        super().__init__(message, code="AUTH_FAILED")


class UpstreamApiError(BridgeError):
    """Raised when an outbound API call returns an error or cannot complete."""

    retryable = True

    def __init__(
        self,
        operation: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "no response"
        message = f"{operation} failed ({status})"
        if body:
            message = f"{message}: {body}"
        super().__init__(message, code="UPSTREAM_FAILED")


def is_retryable(exc: BaseException) -> bool:
    """True when a redelivery of the same event could succeed."""
    return isinstance(exc, BridgeError) and exc.retryable
