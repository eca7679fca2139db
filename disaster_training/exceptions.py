"""
Error taxonomy for the Disaster Training Platform.

Services raise these; the exception handlers registered in main.py turn them
into the standard response envelope:

    {"success": false, "message": "...", "errors": [...]}
"""
from typing import Any, Dict, List, Optional


class PlatformError(Exception):
    """Base class for all errors rendered to API clients."""

    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None
    ):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_envelope(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class Unauthenticated(PlatformError):
    """Missing, invalid or expired credential."""
    status_code = 401
    default_message = "Not authorized to access this route"


class PendingApproval(PlatformError):
    """Valid credential but the account has not been approved yet."""
    status_code = 403
    default_message = "Account is pending approval. Please wait for administrator approval."


class Forbidden(PlatformError):
    """Valid credential, insufficient role/permission/state scope."""
    status_code = 403
    default_message = "Access denied. Insufficient permissions."


class NotFound(PlatformError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(PlatformError):
    """Duplicate registration, feedback or email."""
    status_code = 409
    default_message = "Resource already exists"


class CapacityExceeded(PlatformError):
    status_code = 409
    default_message = "Training is at full capacity"


class DeadlinePassed(PlatformError):
    status_code = 400
    default_message = "Registration deadline has passed"


class NotRegistered(PlatformError):
    status_code = 400
    default_message = "User not registered for this training"


class ValidationError(PlatformError):
    """Schema, range or enum violation."""
    status_code = 422
    default_message = "Validation failed"


class InternalError(PlatformError):
    status_code = 500
    default_message = "Something went wrong!"
