"""
Errors raised by the permission service.

Storage failures are not wrapped: SQLAlchemy errors propagate unchanged and
the enclosing session rolls back.
"""


class PermissionServiceError(Exception):
    """Base class for permission service errors."""


class ValidationError(PermissionServiceError, ValueError):
    """Declared metadata or a request is inconsistent with stored state."""


class NotFoundError(PermissionServiceError, LookupError):
    """A referenced row does not exist."""
