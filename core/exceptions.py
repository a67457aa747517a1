"""
Application exceptions raised by the service layer.

Routers translate these into HTTP responses with ``to_http_exception``.
"""
from typing import Optional

from fastapi import HTTPException, status


class CampusReportsError(Exception):
    """Base exception for all service-layer errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CampusReportsError):
    """Raised when submitted data fails validation."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None):
        """
        Args:
            message: Human readable message
            field: Name of the offending field, if any
        """
        self.field = field
        super().__init__(message)


class AuthorizationError(CampusReportsError):
    """Raised when the caller's role does not allow the operation."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(CampusReportsError):
    """Raised when a requested record does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class StateError(CampusReportsError):
    """Raised when an operation is illegal in the record's current state."""

    status_code = status.HTTP_409_CONFLICT


class IntegrityError(CampusReportsError):
    """Raised when a multi-step write failed and was rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransientError(CampusReportsError):
    """Raised when a collaborator (storage, email) is unavailable."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, status_code: Optional[int] = None):
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


def to_http_exception(error: CampusReportsError) -> HTTPException:
    """Map a service error to the HTTPException the routers raise."""
    if isinstance(error, ValidationError) and error.field:
        return HTTPException(
            status_code=error.status_code,
            detail={"field": error.field, "message": error.message},
        )
    return HTTPException(status_code=error.status_code, detail=error.message)
