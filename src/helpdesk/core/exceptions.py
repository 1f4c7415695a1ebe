"""
Core Exceptions
================

Error types raised by the SLA services.

Each class carries the HTTP status the API layer answers with, so handlers
map them without knowing individual cases. ``details`` holds field-level
information for client errors.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A request that breaks an SLA business rule."""


class RepositoryException(ApplicationException):
    """The ticket or policy store failed to read or write."""


class ValidationException(ApplicationException):
    """Malformed policy input or query parameters. Raised before any write."""

    status_code = 422


class ConflictException(DomainException):
    """
    The change would violate a persistent invariant.

    Deleting a policy that tickets still reference, or losing the race for
    the single active policy of a priority.
    """

    status_code = 409


class UnauthorizedException(ApplicationException):
    """Caller identity is missing or not recognised."""

    status_code = 401


class ForbiddenException(ApplicationException):
    """Caller's role or scope does not permit the operation."""

    status_code = 403


class ResourceNotFoundException(ApplicationException):
    """Unknown policy or ticket id."""

    status_code = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} '{resource_id}' not found" if resource_id else f"{resource_type} not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """The SLA configuration file cannot be read or is invalid."""
