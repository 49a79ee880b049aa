"""Typed exceptions raised by the service and assembly layers."""
from __future__ import annotations
from typing import Any, Optional


UNKNOWN = "[unknown]"


class BackendError(Exception):
    """Base exception for all backend operations."""

    def report_internals(self) -> dict[str, Any]:
        """Details exposed in error responses when running in debug mode."""
        return {
            "internalErrorType": type(self).__name__,
            "internalErrorMessage": str(self),
        }


class ResourceError(BackendError):
    """Operation on a persisted resource failed.

    Attributes:
        resource_type: Entity type name (e.g. "User")
        action: Action that failed (FIND, UPDATE, ...)
        identifier: Identifier of the affected resource
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        action: str = UNKNOWN,
        identifier: Any = UNKNOWN,
    ):
        self.detail = message
        self.resource_type = resource_type or UNKNOWN
        self.action = action
        self.identifier = identifier
        super().__init__(self._format())

    def _format(self) -> str:
        if self.resource_type != UNKNOWN:
            return (
                f"Error during '{self.action}' action on resource type '{self.resource_type}' "
                f"with identifier '{self.identifier}': {self.detail}"
            )
        return (
            f"Error during '{self.action}' action on resource with identifier "
            f"'{self.identifier}': {self.detail}"
        )

    def report_internals(self) -> dict[str, Any]:
        internals = super().report_internals()
        internals.update(
            resourceType=self.resource_type,
            action=self.action,
            identifier=str(self.identifier),
        )
        return internals


class ResourceNotFoundError(ResourceError):
    """Entity or foreign reference does not exist."""

    def __init__(self, resource_type: Optional[str] = None, identifier: Any = UNKNOWN, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot find resource with ID '{identifier}'",
            resource_type,
            "FIND",
            identifier,
        )


class UserNotFoundError(ResourceNotFoundError):
    """User lookup failed - username does not exist."""

    def __init__(self, username: str):
        super().__init__("User", username, f"No user with username '{username}'")


class ResourceUpdateError(ResourceError):
    """Update or patch could not be applied."""

    def __init__(self, message: str, resource_type: Optional[str] = None, identifier: Any = UNKNOWN):
        super().__init__(message, resource_type, "UPDATE", identifier)


class DuplicateResourceError(ResourceError):
    """Resource with the same unique key already exists."""

    def __init__(self, message: str, resource_type: Optional[str] = None, identifier: Any = UNKNOWN):
        super().__init__(message, resource_type, "CREATE", identifier)


class ValidationError(BackendError):
    """Input payload failed validation.

    Attributes:
        field: Offending field name, if known
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotAllowedError(BackendError):
    """Caller lacks the rights for the requested operation."""
    pass


class UnsupportedOperationError(BackendError):
    """Operation is not offered for this resource type."""
    pass


class AuthenticationError(BackendError):
    """Credentials were missing, wrong or the account cannot log in."""
    pass


class TokenValidationError(AuthenticationError):
    """Bearer token is malformed, expired, or invalidated."""
    pass
