"""
Refresh cycle for sentiment observations.

Runs one pass of the pipeline over a batch of fresh observations:

1. Store every observation (per-instrument, duplicates skipped)
2. Detect signal transitions on the same batch
3. Mirror the last known signals to terminal directories (best effort)
4. Ask the notification gate about every observation
5. Notify approved observations and record successful deliveries

The gate is consulted for every observation, not only those carrying a
transition. A notifier that fails or raises leaves the gate untouched so
the next cycle re-evaluates against the same baseline.

Example:
    >>> from fxsentiment.pipeline import RefreshCycle, LoggingNotifier
    >>> cycle = RefreshCycle.from_directory(Path("data"), notifier=LoggingNotifier())
    >>> result = cycle.run(observations)
    >>> print(result.to_dict())
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

from ..config import (
    DUPLICATE_WINDOW,
    HISTORY_CACHE_SIZE,
    RETENTION_DAYS,
    SIGNAL_THRESHOLD_PCT,
    validate_threshold,
)
from ..signals.notification_gate import NotificationGate
from ..signals.transition_detector import TransitionDetector
from ..storage.codec import normalize_instrument
from ..storage.models import Observation, StorageFailure, TransitionEvent
from ..storage.observation_store import ObservationStore
from .notifier import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

OBSERVATIONS_DIR_NAME = "observations"
CHANGES_DIR_NAME = "changes"


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class CycleResult:
    """
    Outcome of one refresh cycle.

    Attributes:
        observations: Observations received.
        stored: Observations appended to the store.
        duplicates: Observations skipped as duplicates.
        store_failures: Observations whose append failed.
        transitions: Detected signal changes.
        notifications_sent: Alerts delivered and recorded.
        notifications_suppressed: Alerts rejected by the gate.
        notifications_failed: Approved alerts the notifier failed to deliver.
        terminals_updated: Terminal directories that received the snapshot.
        events: Detected transition events.
        timestamp: When the cycle ran.
    """

    observations: int = 0
    stored: int = 0
    duplicates: int = 0
    store_failures: int = 0
    transitions: int = 0
    notifications_sent: int = 0
    notifications_suppressed: int = 0
    notifications_failed: int = 0
    terminals_updated: int = 0
    events: list[TransitionEvent] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "observations": self.observations,
            "stored": self.stored,
            "duplicates": self.duplicates,
            "store_failures": self.store_failures,
            "transitions": self.transitions,
            "notifications_sent": self.notifications_sent,
            "notifications_suppressed": self.notifications_suppressed,
            "notifications_failed": self.notifications_failed,
            "terminals_updated": self.terminals_updated,
            "events": [e.to_dict() for e in self.events],
        }


class RefreshCycle:
    """
    Wires the store, detector, gate and notifier into one cycle.

    Attributes:
        store: Observation persistence.
        detector: Signal transition detector.
        gate: Notification gate.
        notifier: Alert transport.
        threshold_pct: Threshold passed to the gate.
        mirror_dirs: Terminal directories receiving the signal snapshot.
        cycle_count: Cycles run by this instance.
    """

    def __init__(
        self,
        store: ObservationStore,
        detector: TransitionDetector,
        gate: NotificationGate,
        notifier: Notifier,
        threshold_pct: Optional[Any] = None,
        mirror_dirs: Iterable[Path] = (),
    ):
        """
        Initialize the cycle.

        Args:
            store: Observation store
            detector: Transition detector
            gate: Notification gate
            notifier: Alert transport
            threshold_pct: Gate threshold (default from config)
            mirror_dirs: Terminal directories for the snapshot mirror

        Raises:
            ConfigurationError: If the threshold is outside the allowed range
        """
        self.store = store
        self.detector = detector
        self.gate = gate
        self.notifier = notifier
        self.threshold_pct: Decimal = validate_threshold(
            SIGNAL_THRESHOLD_PCT if threshold_pct is None else threshold_pct
        )
        self.mirror_dirs = [Path(d) for d in mirror_dirs]

        self.cycle_count = 0
        self.last_result: Optional[CycleResult] = None

        logger.info(
            f"RefreshCycle initialized: threshold={self.threshold_pct}%, "
            f"notifier={type(notifier).__name__}, terminals={len(self.mirror_dirs)}"
        )

    @classmethod
    def from_directory(
        cls,
        data_dir: Path,
        notifier: Optional[Notifier] = None,
        threshold_pct: Optional[Any] = None,
        mirror_dirs: Iterable[Path] = (),
    ) -> "RefreshCycle":
        """Build a cycle whose components live under ``data_dir``."""
        data_dir = Path(data_dir)
        threshold = validate_threshold(
            SIGNAL_THRESHOLD_PCT if threshold_pct is None else threshold_pct
        )
        return cls(
            store=ObservationStore(data_dir / OBSERVATIONS_DIR_NAME, duplicate_window=DUPLICATE_WINDOW),
            detector=TransitionDetector(data_dir / CHANGES_DIR_NAME, cache_size=HISTORY_CACHE_SIZE),
            gate=NotificationGate(data_dir / CHANGES_DIR_NAME, threshold_pct=threshold),
            notifier=notifier or LoggingNotifier(),
            threshold_pct=threshold,
            mirror_dirs=mirror_dirs,
        )

    def run(self, observations: Iterable[Observation]) -> CycleResult:
        """
        Run one cycle over a batch.

        Args:
            observations: Fresh readings, processed in order

        Returns:
            CycleResult with counts and the detected events
        """
        batch = list(observations)
        result = CycleResult(observations=len(batch))

        # 1. Persist
        summary = self.store.append_many(batch)
        result.stored = summary.written
        result.duplicates = summary.duplicates
        result.store_failures = summary.failed

        # 2. Detect
        events = self.detector.process_batch(batch)
        result.events = events
        result.transitions = len(events)
        events_by_instrument = {e.instrument: e for e in events}

        # 3. Terminal mirror
        for directory in self.mirror_dirs:
            if self.detector.sync_snapshot_to(directory):
                result.terminals_updated += 1

        # 4-5. Gate and notify
        for obs in batch:
            if not self.gate.should_send(obs.instrument, obs.signal, obs.buy_pct, self.threshold_pct):
                result.notifications_suppressed += 1
                continue

            event = events_by_instrument.get(normalize_instrument(obs.instrument))
            try:
                delivered = self.notifier.send(obs, event)
            except Exception as e:
                logger.error(f"Notifier raised for {obs.instrument}: {e}")
                delivered = False

            if delivered:
                self.gate.record_sent(obs.instrument, obs.signal, obs.buy_pct)
                result.notifications_sent += 1
            else:
                result.notifications_failed += 1

        self.cycle_count += 1
        self.last_result = result

        logger.info(
            f"Cycle {self.cycle_count}: {result.observations} observations, "
            f"{result.stored} stored, {result.transitions} transitions, "
            f"{result.notifications_sent} alerts sent, "
            f"{result.notifications_suppressed} suppressed"
        )
        return result

    def cleanup(self, days: int = RETENTION_DAYS) -> dict[str, Any]:
        """
        Apply retention to all three components.

        Args:
            days: Keep records from the last ``days`` days (0 or less skips)

        Returns:
            Dictionary with removed counts per component
        """
        if days <= 0:
            logger.info(f"Cleanup skipped (retention {days} days)")
            return {"observations": 0, "transitions": 0, "last_sent": 0, "skipped": True}

        cutoff = _utc_now() - timedelta(days=days)
        prune = self.store.prune_older_than(cutoff)

        transitions = 0
        try:
            transitions = self.detector.prune_older_than(cutoff)
        except StorageFailure as e:
            logger.error(f"Transition history cleanup failed: {e}")

        last_sent = 0
        try:
            last_sent = self.gate.prune_older_than(cutoff)
        except StorageFailure as e:
            logger.error(f"Last sent cleanup failed: {e}")

        logger.info(
            f"Cleanup ({days} days): {prune.total_removed} observations, "
            f"{transitions} transitions, {last_sent} last sent entries removed"
        )
        return {
            "observations": prune.total_removed,
            "observation_failures": dict(prune.failed),
            "transitions": transitions,
            "last_sent": last_sent,
            "skipped": False,
        }

    def get_status(self) -> dict[str, Any]:
        """Store, detector and gate statistics in one dictionary."""
        return {
            "cycle_count": self.cycle_count,
            "threshold_pct": str(self.threshold_pct),
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "store": self.store.overall_statistics(),
            "detector": self.detector.get_statistics(),
            "gate": self.gate.get_statistics(),
        }

    def shutdown(self) -> None:
        self.detector.shutdown()
        self.gate.shutdown()
