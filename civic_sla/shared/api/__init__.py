"""Shared HTTP middleware and exception handlers."""
