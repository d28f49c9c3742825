"""
Subscription Analytics Module

Snapshot ledger, cohort retention, trial conversion and MRR reporting.
Components live in their submodules; only the error types are exported
here since ingestion code depends on them.
"""
from .exceptions import AnalyticsError, InvalidPeriodError, ManualSourceError, UpstreamUnavailableError

__all__ = [
    "AnalyticsError",
    "InvalidPeriodError",
    "ManualSourceError",
    "UpstreamUnavailableError",
]
