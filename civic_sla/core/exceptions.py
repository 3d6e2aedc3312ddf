"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ConcurrentUpdateException(RepositoryException):
    """
    Raised when an atomic conditional update loses a race.

    The caller re-reads the record and retries; the conflict is never
    swallowed.
    """

    retryable = True

    def __init__(
        self,
        issue_id: str,
        expected_version: int,
        details: Optional[dict] = None
    ):
        self.issue_id = issue_id
        self.expected_version = expected_version
        super().__init__(
            f"Issue {issue_id} was modified concurrently (expected version {expected_version})",
            details or {"issue_id": issue_id, "expected_version": expected_version}
        )


class ValidationException(DomainException):
    """Exception for invalid input to a domain operation."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

