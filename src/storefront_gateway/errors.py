"""Error taxonomy shared by the gateway components."""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for errors that map onto an HTTP response."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(GatewayError):
    """Raised when caller input is rejected at the boundary."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(GatewayError):
    """Raised when the distributor credential exchange fails."""

    code = "AUTH_ERROR"
    status_code = 500


class UpstreamError(GatewayError):
    """Raised when a distributor call fails or returns an unusable response."""

    code = "UPSTREAM_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        upstream_body: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"status": upstream_status, "body": upstream_body},
        )
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class SignatureError(GatewayError):
    """Raised when a payment webhook fails authenticity verification."""

    code = "SIGNATURE_ERROR"
    status_code = 400


class CheckoutCreationError(GatewayError):
    """Raised when the payment processor rejects a checkout session."""

    code = "CHECKOUT_CREATION_FAILED"
    status_code = 500


class PersistenceError(GatewayError):
    """Raised when a durable write or read fails."""

    code = "PERSISTENCE_ERROR"
    status_code = 500


class InvalidTransitionError(ValidationError):
    """Raised when an order state change is not allowed by the lifecycle."""

    code = "INVALID_TRANSITION"
