"""
Signal transition detection for sentiment observations.

The detector keeps the last known signal of every instrument and compares
each incoming observation against it. A change produces a classified
TransitionEvent that is appended to the history log; the full table of last
known signals is rewritten as a snapshot after every batch so a restart
resumes from the same watermark.

Features:
- First observation of an instrument is never a transition
- Importance classification (CRITICAL, HIGH, MEDIUM)
- Append-only history log with header-on-first-write
- Bounded per-instrument cache of recent changes (newest first)
- Snapshot rewritten on every batch, even without changes
- Best-effort persistence: detected events are returned even if logging fails
- Mirror of the snapshot into trading terminal directories

Example:
    >>> from pathlib import Path
    >>> from fxsentiment.signals import TransitionDetector
    >>>
    >>> detector = TransitionDetector(Path("data/changes"))
    >>> events = detector.process_batch(observations)
    >>> for event in events:
    ...     print(event.describe())
    >>> last = detector.most_recent("EURUSD")
    >>> stats = detector.get_statistics()
"""

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

from ..storage import codec
from ..storage.line_file import append_lines, ensure_header, read_lines, rewrite_lines
from ..storage.models import (
    Importance,
    MalformedRecord,
    Observation,
    Signal,
    StorageFailure,
    TransitionEvent,
    to_utc_seconds,
)
from .terminal_sync import sync_to_directories

logger = logging.getLogger(__name__)

HISTORY_FILE_NAME = "history.dat"
SNAPSHOT_FILE_NAME = "snapshot.dat"
DEFAULT_CACHE_SIZE = 100


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class TransitionDetector:
    """
    Detects and records signal changes per instrument.

    One lock guards the whole detect-and-persist step, since correctness
    depends on read-then-write consistency of the complete snapshot.

    Attributes:
        directory: Directory holding history.dat and snapshot.dat.
        cache_size: Maximum cached events per instrument.
    """

    def __init__(self, directory: Path, cache_size: int = DEFAULT_CACHE_SIZE):
        """
        Initialize the detector and load the snapshot if present.

        Args:
            directory: Backing directory for history and snapshot files
            cache_size: Events cached per instrument (default 100)
        """
        self.directory = Path(directory)
        self.cache_size = cache_size

        self._last_signals: dict[str, Signal] = {}
        self._last_buy_pct: dict[str, Decimal] = {}
        self._history_cache: dict[str, list[TransitionEvent]] = {}
        self._lock = threading.Lock()

        self.load_snapshot()

    @property
    def history_path(self) -> Path:
        return self.directory / HISTORY_FILE_NAME

    @property
    def snapshot_path(self) -> Path:
        return self.directory / SNAPSHOT_FILE_NAME

    # =========================================================================
    # Snapshot
    # =========================================================================

    def load_snapshot(self) -> int:
        """
        Load the last known signals from disk.

        Malformed lines are skipped. A missing file leaves the table empty.

        Returns:
            Number of instruments loaded
        """
        with self._lock:
            self._last_signals.clear()
            try:
                lines = read_lines(self.snapshot_path)
            except OSError as e:
                logger.error(f"Failed to read signal snapshot: {e}")
                return 0

            for line in lines:
                if codec.is_header(line):
                    continue
                try:
                    instrument, signal = codec.decode_snapshot_entry(line)
                except MalformedRecord as e:
                    logger.warning(f"Skipping malformed snapshot line: {e}")
                    continue
                self._last_signals[codec.normalize_instrument(instrument)] = signal

            if self._last_signals:
                logger.info(f"Loaded {len(self._last_signals)} last known signals")
            return len(self._last_signals)

    def _save_snapshot(self) -> None:
        rewrite_lines(
            self.snapshot_path,
            codec.SNAPSHOT_HEADER,
            (codec.encode_snapshot_entry(i, s) for i, s in sorted(self._last_signals.items())),
        )

    # =========================================================================
    # Detection
    # =========================================================================

    def process_batch(self, observations: Iterable[Observation]) -> list[TransitionEvent]:
        """
        Compare a batch against the last known signals.

        Observations are handled in the given order. The watermark of every
        instrument in the batch is updated whether or not its signal changed.
        Instruments are keyed the same way as the observation store, so
        ``eur/usd`` and ``EUR_USD`` share one watermark.

        Args:
            observations: Fresh readings

        Returns:
            Newly detected events (often empty). Durability is best effort:
            events are returned even if writing them failed.
        """
        events: list[TransitionEvent] = []

        with self._lock:
            for obs in observations:
                key = codec.normalize_instrument(obs.instrument)
                previous = self._last_signals.get(key)

                if previous is not None and previous != obs.signal:
                    event = TransitionEvent(
                        instrument=key,
                        from_signal=previous,
                        to_signal=obs.signal,
                        change_time=obs.timestamp,
                        from_buy_pct=self._last_buy_pct.get(key, obs.buy_pct),
                        to_buy_pct=obs.buy_pct,
                    )
                    events.append(event)
                    logger.info(f"Signal change: {event.describe()}")

                self._last_signals[key] = obs.signal
                self._last_buy_pct[key] = obs.buy_pct

            if events:
                try:
                    self._append_history(events)
                except OSError as e:
                    logger.error(f"Failed to write {len(events)} signal changes: {e}")
                self._cache_events(events)

            try:
                self._save_snapshot()
            except OSError as e:
                logger.error(f"Failed to save signal snapshot: {e}")

        return events

    def _append_history(self, events: list[TransitionEvent]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        ensure_header(self.history_path, codec.HISTORY_HEADER)
        append_lines(self.history_path, [codec.encode_transition(e) for e in events])

    def _cache_events(self, events: list[TransitionEvent]) -> None:
        # Only instruments already loaded into the cache; others load lazily.
        for event in events:
            cached = self._history_cache.get(event.instrument)
            if cached is None:
                continue
            cached.insert(0, event)
            del cached[self.cache_size:]

    # =========================================================================
    # History queries
    # =========================================================================

    def _read_history(self) -> list[TransitionEvent]:
        try:
            lines = read_lines(self.history_path)
        except OSError as e:
            logger.error(f"Failed to read signal history: {e}")
            raise StorageFailure(f"Failed to read {self.history_path}: {e}") from e

        events = []
        for line in lines:
            if codec.is_header(line):
                continue
            try:
                events.append(codec.decode_transition(line))
            except MalformedRecord as e:
                logger.warning(f"Skipping malformed history line: {e}")
        return events

    def history_for(self, instrument: str) -> list[TransitionEvent]:
        """
        Recorded changes of an instrument, newest first (at most ``cache_size``).

        Served from the cache when possible, otherwise the history log is
        scanned and the result cached.
        """
        instrument = codec.normalize_instrument(instrument)
        with self._lock:
            cached = self._history_cache.get(instrument)
            if cached is not None:
                return list(cached)

            events = [e for e in self._read_history() if e.instrument == instrument]
            events.sort(key=lambda e: e.change_time, reverse=True)
            self._history_cache[instrument] = events[: self.cache_size]
            return list(self._history_cache[instrument])

    def recent_changes(self, instrument: str, count: int) -> list[TransitionEvent]:
        return self.history_for(instrument)[:count]

    def recent_within_hours(
        self, instrument: str, hours: float, now: Optional[datetime] = None
    ) -> list[TransitionEvent]:
        """Changes of an instrument no older than ``hours``."""
        now = now or _utc_now()
        return [e for e in self.history_for(instrument) if e.is_within_hours(hours, now)]

    def most_recent(self, instrument: str) -> Optional[TransitionEvent]:
        history = self.history_for(instrument)
        return history[0] if history else None

    def all_changes(self, hours: Optional[float] = None) -> list[TransitionEvent]:
        """Every recorded change (optionally limited to the last ``hours``), newest first."""
        with self._lock:
            events = self._read_history()
        if hours is not None:
            now = _utc_now()
            events = [e for e in events if e.is_within_hours(hours, now)]
        events.sort(key=lambda e: e.change_time, reverse=True)
        return events

    def last_known_signal(self, instrument: str) -> Optional[Signal]:
        with self._lock:
            return self._last_signals.get(codec.normalize_instrument(instrument))

    def known_signals(self) -> dict[str, Signal]:
        with self._lock:
            return dict(self._last_signals)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def prune_older_than(self, cutoff: datetime) -> int:
        """
        Drop history entries older than ``cutoff`` and clear the cache.

        Returns:
            Number of removed events

        Raises:
            StorageFailure: If the history log cannot be rewritten
        """
        cutoff = to_utc_seconds(cutoff)
        with self._lock:
            events = self._read_history()
            kept = [e for e in events if e.change_time >= cutoff]
            removed = len(events) - len(kept)
            if removed:
                try:
                    rewrite_lines(
                        self.history_path,
                        codec.HISTORY_HEADER,
                        (codec.encode_transition(e) for e in kept),
                    )
                except OSError as e:
                    logger.error(f"Failed to prune signal history: {e}")
                    raise StorageFailure(f"Failed to rewrite {self.history_path}: {e}") from e
                logger.info(f"Pruned {removed} signal changes older than {cutoff}")
            self._history_cache.clear()
            return removed

    def get_statistics(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Totals and importance breakdown of the history log."""
        now = now or _utc_now()
        events = self.all_changes()
        by_importance = Counter(e.importance for e in events)
        day_ago = to_utc_seconds(now) - timedelta(hours=24)
        with self._lock:
            tracked = len(self._last_signals)
            cached = len(self._history_cache)
        return {
            "total_changes": len(events),
            "changes_last_24h": sum(1 for e in events if e.change_time >= day_ago),
            "tracked_instruments": tracked,
            "cached_instruments": cached,
            "by_importance": {imp.value: by_importance.get(imp, 0) for imp in Importance},
        }

    def sync_snapshot_to(self, target_dir: Path) -> bool:
        """
        Mirror the last known signals into a terminal directory.

        Never raises; failures are logged.

        Returns:
            True if the terminal file was written
        """
        with self._lock:
            rows = [
                (instrument, signal, self._last_buy_pct.get(instrument))
                for instrument, signal in sorted(self._last_signals.items())
            ]
        return sync_to_directories([Path(target_dir)], rows) == 1

    def shutdown(self) -> None:
        """Persist the snapshot and release in-memory state."""
        with self._lock:
            try:
                self._save_snapshot()
            except OSError as e:
                logger.error(f"Failed to save signal snapshot on shutdown: {e}")
            self._last_signals.clear()
            self._last_buy_pct.clear()
            self._history_cache.clear()
        logger.info("TransitionDetector shut down")
