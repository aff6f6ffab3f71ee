"""
Error taxonomy shared by the order core, the real-time hub and the API.

Every error carries a stable ``kind`` tag, a human-readable message and
optional structured context for logging. The HTTP layer maps ``kind`` to a
status code; the WebSocket layer sends the same body as an ``error`` event.
"""

from typing import Any


class DeliveryHubError(Exception):
    """Base exception for all domain errors."""

    kind: str = "internal"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, str]:
        """Render the caller-visible part of the error."""
        return {"error": self.kind, "message": self.message}


class ValidationError(DeliveryHubError):
    """Raised when input is malformed or missing."""

    kind = "validation_error"
    status_code = 400


class AuthError(DeliveryHubError):
    """Raised when a credential is missing, invalid or expired."""

    kind = "auth_error"
    status_code = 401


class ForbiddenError(DeliveryHubError):
    """Raised when an authenticated actor may not perform an action."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(DeliveryHubError):
    """Raised when an entity does not exist."""

    kind = "not_found"
    status_code = 404


class InvalidTransitionError(DeliveryHubError):
    """Raised when the state machine rejects a requested edge."""

    kind = "invalid_transition"
    status_code = 400


class ConflictError(DeliveryHubError):
    """Raised when a concurrent mutation invalidated the assumed prior state."""

    kind = "conflict"
    status_code = 409
    retryable = True


class OperationTimeoutError(DeliveryHubError):
    """Raised when an order mutation outlives its time budget."""

    kind = "timeout"
    status_code = 504


class InternalError(DeliveryHubError):
    """Raised when a collaborator fails unexpectedly."""

    kind = "internal"
    status_code = 500

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": "An unexpected error occurred"}
