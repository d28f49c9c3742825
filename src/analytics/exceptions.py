"""
Custom exceptions for the analytics engine.
"""


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics engine."""


class UpstreamUnavailableError(AnalyticsError):
    """Raised when the billing source or the tabular store cannot be reached."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source} unavailable: {message}")


class InvalidPeriodError(AnalyticsError):
    """Raised when a reporting window is not one of the configured periods."""


class ManualSourceError(AnalyticsError):
    """Raised when the manually curated subscription file cannot be loaded."""
