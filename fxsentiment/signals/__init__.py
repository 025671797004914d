"""
Signal tracking modules.

This module provides tools for:
- Signal transition detection and history (TransitionDetector)
- Anti-spam notification gating (NotificationGate)
- Mirroring last known signals to trading terminals
"""

from .transition_detector import TransitionDetector
from .notification_gate import NotificationGate
from .terminal_sync import sync_to_directories, terminal_symbol

__all__ = [
    "TransitionDetector",
    "NotificationGate",
    "sync_to_directories",
    "terminal_symbol",
]
