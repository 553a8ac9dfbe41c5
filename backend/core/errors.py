"""
errors.py — Exception types raised by the analytics core.

The HTTP layer maps each type to a status code in main.py; the core
itself never imports FastAPI.
"""

from typing import Iterable


class AnalyticsError(Exception):
    """Base class for all analytics failures."""

    status_code = 500


class InvalidArgumentError(AnalyticsError, ValueError):
    """An enumerated parameter was outside its allowed set."""

    status_code = 400

    def __init__(self, field: str, value, allowed: Iterable[str] = ()):
        self.field = field
        self.value = value
        self.allowed = [str(a) for a in allowed]
        if self.allowed:
            message = (
                f"Invalid {field} '{value}'. "
                f"Allowed values: {', '.join(self.allowed)}."
            )
        else:
            message = f"Invalid {field} '{value}'."
        super().__init__(message)


class AccessDeniedError(AnalyticsError):
    """The actor's role does not permit the requested view."""

    status_code = 403


class ReportGenerationError(AnalyticsError):
    """A report could not be assembled completely."""

    status_code = 422


class DataSourceError(AnalyticsError):
    """A record source could not be read."""

    status_code = 502
