"""Custom exception classes for the coliving backend."""

from typing import Any, Optional

from fastapi import status


class ColivingError(Exception):
    """Base exception for the coliving backend."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(ColivingError):
    """Raised when input validation fails.

    ``errors`` carries field-level detail as a list of
    ``{"field": ..., "message": ...}`` dicts.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid request data", errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Build from a ``pydantic.ValidationError``."""
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return cls("Invalid request data", errors)


class NotFoundError(ColivingError):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedError(ColivingError):
    """Raised when a credential or shared secret is missing or wrong."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(ColivingError):
    """Raised when the session's role may not use the route."""

    status_code = status.HTTP_403_FORBIDDEN


class UpstreamDispatchError(ColivingError):
    """Raised when the notification provider rejects or fails a send."""

    status_code = status.HTTP_502_BAD_GATEWAY


class StorageError(ColivingError):
    """Raised when a Redis/KV store operation fails."""
