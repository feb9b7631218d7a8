"""Base exceptions for the hasync daemon."""

from typing import Any


class HasyncError(Exception):
    """Base exception for all hasync errors.

    Attributes:
        status: HTTP status code used when the error crosses the REST boundary.
    """

    status: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Render as the structured error payload."""
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(HasyncError):
    """Malformed or missing request fields."""

    status = 400


class AuthenticationError(HasyncError):
    """Invalid/expired PIN or bad credentials."""

    status = 401


class NotFoundError(HasyncError):
    """Unknown client or resource."""

    status = 404


class ConflictError(HasyncError):
    """Request conflicts with current state (public key already paired)."""

    status = 409


class StorageError(HasyncError):
    """Storage operation error."""

    status = 500


class ServiceCallError(HasyncError):
    """Home Assistant service call failed."""

    status = 502
