"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from civic_sla.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ConcurrentUpdateException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ConcurrentUpdateException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
]
