"""Input validation errors raised before the store is touched.

Transport failures from the store are not wrapped here; redis-py exceptions
reach the caller unchanged.
"""
from __future__ import annotations


class AnalyticsError(Exception):
    pass


class InvalidWindow(AnalyticsError, ValueError):
    """Raised when a window is not a positive duration."""


class InvalidTableName(AnalyticsError, ValueError):
    """Raised when a table name contains characters outside [A-Za-z0-9_-]."""


class InvalidEvent(AnalyticsError, ValueError):
    """Raised when an event carries a non-scalar attribute or a bad time."""
