"""
Pipeline modules for running refresh cycles.

This module provides tools for:
- One-pass orchestration of store, detector and gate (RefreshCycle)
- Alert transports (LoggingNotifier, WebhookNotifier)
- Loading observation batches from JSON lines files
"""

from .notifier import LoggingNotifier, Notifier, WebhookNotifier
from .refresh_cycle import CycleResult, RefreshCycle
from .ingest import load_observations, observation_from_dict

__all__ = [
    "RefreshCycle",
    "CycleResult",
    "Notifier",
    "LoggingNotifier",
    "WebhookNotifier",
    "load_observations",
    "observation_from_dict",
]
