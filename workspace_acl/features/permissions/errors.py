"""
Typed errors raised by the write path.

The read path never raises; see service.evaluate_safely.
"""
from fastapi import status


class AccessControlError(Exception):
    """Base error carrying the HTTP status the API layer should answer with."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(AccessControlError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(AccessControlError):
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(AccessControlError):
    """Concurrent or contradictory writes to an override map."""
    status_code = status.HTTP_409_CONFLICT


class InvalidRequestError(AccessControlError, ValueError):
    """Assignment input that names an unknown role or action, or a malformed map."""
    status_code = status.HTTP_400_BAD_REQUEST
