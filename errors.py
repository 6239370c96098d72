"""
Domain errors for the complaint tracker.

Each error carries a stable ``kind`` and the HTTP status the API layer maps it
to. Handlers never build HTTP responses themselves; they raise one of these.
"""

from typing import Any, Dict, Optional


class TrackerError(Exception):
    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(TrackerError):
    """Malformed or missing input."""
    kind = "validation_error"
    status_code = 400


class AuthenticationError(TrackerError):
    """Missing, invalid or expired credentials."""
    kind = "authentication_error"
    status_code = 401


class AuthorizationError(TrackerError):
    """Authenticated actor attempted a forbidden action."""
    kind = "authorization_error"
    status_code = 403


class NotFoundError(TrackerError):
    kind = "not_found"
    status_code = 404


class ConflictError(TrackerError):
    """Invalid state transition or duplicate unique field."""
    kind = "conflict"
    status_code = 409
