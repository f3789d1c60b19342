"""
Custom exception classes and error handling.

Provides consistent error responses across the API, plus the billing
reconciliation taxonomy raised by the webhook pipeline.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


# --- Billing reconciliation -------------------------------------------------
# These are plain exceptions, not HTTP ones: the webhook router decides
# the status code so the reconciler stays usable outside a request.


class BillingError(Exception):
    """Base class for webhook reconciliation errors."""


class InvalidSignature(BillingError):
    """Webhook payload failed signature verification. Terminal, never retried."""


class MalformedMetadata(BillingError):
    """Event lacks data required to act on it (e.g. checkout without email)."""


class UnmatchedSubscription(BillingError):
    """No local subscription for the provider id. Informational only."""

    def __init__(self, provider_subscription_id: Optional[str]):
        super().__init__(f"No local subscription for {provider_subscription_id!r}")
        self.provider_subscription_id = provider_subscription_id


class ReconciliationFailed(BillingError):
    """Persistence failed mid-event; the provider should redeliver."""

    def __init__(self, event_kind: str, cause: Exception):
        super().__init__(f"Failed to reconcile {event_kind}: {cause}")
        self.event_kind = event_kind
        self.cause = cause
