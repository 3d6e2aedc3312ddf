"""Civic SLA - SLA lifecycle service for civic issue reports."""

__version__ = "1.0.0"
