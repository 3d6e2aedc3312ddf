"""
Shared Kernel Module
====================

This module contains shared infrastructure used across the application
(structured logging, HTTP middleware).

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
