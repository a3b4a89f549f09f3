"""
Domain errors raised by the permission and hierarchy services.

Each error carries the HTTP status the API layer answers with.
"""
from fastapi import status


class AccessCoreError(Exception):
    """Base class for all permission/hierarchy errors."""
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AccessCoreError):
    """Unknown user, template, team or organization."""
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(AccessCoreError):
    """Missing or malformed input to a merge or graph operation."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SelfManagementError(AccessCoreError):
    """A user cannot be their own manager."""


class CrossOrganizationError(AccessCoreError):
    """Manager and managed user belong to different organizations."""


class CycleError(AccessCoreError):
    """The new edge would close a loop in the reporting chain."""


class DuplicateEdgeError(AccessCoreError):
    status_code = status.HTTP_409_CONFLICT


class ConcurrentUpdateError(AccessCoreError):
    """Retries exhausted while racing another writer on the same record."""
    status_code = status.HTTP_409_CONFLICT
