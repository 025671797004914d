"""
Storage layer for sentiment observations.

This module provides:
- Core value types (Observation, TransitionEvent, LastSentSignal)
- Signal, Importance and Actuality enumerations
- Line codec for the semicolon-separated data files
- Per-instrument observation store with duplicate suppression and pruning
"""

from .models import (
    Actuality,
    ConfigurationError,
    Importance,
    LastSentSignal,
    MalformedRecord,
    Observation,
    SentimentStoreError,
    Signal,
    StorageFailure,
    TransitionEvent,
    classify_transition,
)
from .codec import normalize_instrument
from .observation_store import AppendSummary, ObservationStore, PruneResult, ValidationResult

__all__ = [
    # Models
    "Observation",
    "TransitionEvent",
    "LastSentSignal",
    "Signal",
    "Importance",
    "Actuality",
    "classify_transition",
    # Errors
    "SentimentStoreError",
    "StorageFailure",
    "MalformedRecord",
    "ConfigurationError",
    # Store
    "ObservationStore",
    "AppendSummary",
    "PruneResult",
    "ValidationResult",
    "normalize_instrument",
]
