"""
Anti-spam gate for signal notifications.

The gate remembers, per instrument, the last signal an alert was actually
delivered for. A new alert is allowed only for a different signal whose buy
share moved at least the configured threshold since that delivery.

Rules:
- No prior delivery for the instrument: always send
- Same signal as last delivered: never send, regardless of magnitude
- Different signal: send iff abs(value - last_value) >= threshold

The gate is evaluated independently of transition importance, so a
CRITICAL reversal can still be suppressed by a small move.
"""

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from ..config import validate_threshold
from ..storage import codec
from ..storage.line_file import read_lines, rewrite_lines
from ..storage.models import (
    ConfigurationError,
    LastSentSignal,
    MalformedRecord,
    Signal,
    StorageFailure,
    to_decimal,
    to_utc_seconds,
)

logger = logging.getLogger(__name__)

LASTSENT_FILE_NAME = "lastsent.dat"
DEFAULT_THRESHOLD_PCT = Decimal("3.0")


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class NotificationGate:
    """
    Decides whether a notification should be attempted.

    Attributes:
        directory: Directory holding lastsent.dat.
        threshold_pct: Default minimum move in percentage points.
    """

    def __init__(self, directory: Path, threshold_pct: Decimal = DEFAULT_THRESHOLD_PCT):
        """
        Initialize the gate and load previously sent signals.

        Args:
            directory: Backing directory
            threshold_pct: Default threshold used when should_send gets None

        Raises:
            ConfigurationError: If the threshold is outside the allowed range
        """
        self.directory = Path(directory)
        self.threshold_pct = validate_threshold(threshold_pct)

        self._last_sent: dict[str, LastSentSignal] = {}
        self._lock = threading.Lock()

        self.load_snapshot()

    @property
    def path(self) -> Path:
        return self.directory / LASTSENT_FILE_NAME

    def load_snapshot(self) -> int:
        """Load the last-sent table, skipping malformed lines."""
        with self._lock:
            self._last_sent.clear()
            try:
                lines = read_lines(self.path)
            except OSError as e:
                logger.error(f"Failed to read last sent signals: {e}")
                return 0

            for line in lines:
                if codec.is_header(line):
                    continue
                try:
                    record = codec.decode_last_sent(line)
                except MalformedRecord as e:
                    logger.warning(f"Skipping malformed last-sent line: {e}")
                    continue
                self._last_sent[codec.normalize_instrument(record.instrument)] = record

            if self._last_sent:
                logger.info(f"Loaded {len(self._last_sent)} last sent signals")
            return len(self._last_sent)

    def _save(self) -> None:
        rewrite_lines(
            self.path,
            codec.LASTSENT_HEADER,
            (codec.encode_last_sent(r) for _, r in sorted(self._last_sent.items())),
        )

    # =========================================================================
    # Decision
    # =========================================================================

    def should_send(
        self,
        instrument: str,
        signal: Signal,
        value: Any,
        threshold_pct: Optional[Any] = None,
    ) -> bool:
        """
        Decide whether an alert for this reading should be attempted.

        Never raises: an unparseable value or threshold is treated as
        "do not send" unless the instrument has no prior delivery.

        Args:
            instrument: Instrument identifier
            signal: Signal of the new reading
            value: Buy percentage of the new reading
            threshold_pct: Override of the default threshold

        Returns:
            True if an alert should be attempted
        """
        instrument = codec.normalize_instrument(instrument)
        with self._lock:
            previous = self._last_sent.get(instrument)

        if previous is None:
            logger.debug(f"{instrument}: no previous alert, sending")
            return True

        if previous.signal == signal:
            logger.debug(f"{instrument}: signal {signal} unchanged since last alert, suppressing")
            return False

        try:
            threshold = self.threshold_pct if threshold_pct is None else validate_threshold(threshold_pct)
        except ConfigurationError as e:
            logger.warning(f"{instrument}: rejected threshold override: {e}")
            return False

        try:
            current = to_decimal(value)
            if not current.is_finite():
                raise ValueError("not a finite number")
            difference = abs(current - previous.buy_pct)
            send = difference >= threshold
        except (InvalidOperation, ValueError, TypeError) as e:
            logger.warning(f"{instrument}: cannot compare value {value!r}: {e}")
            return False

        logger.debug(
            f"{instrument}: {previous.signal} -> {signal}, moved {difference} "
            f"(threshold {threshold}) -> {'send' if send else 'suppress'}"
        )
        return send

    def record_sent(
        self,
        instrument: str,
        signal: Signal,
        value: Any,
        sent_time: Optional[datetime] = None,
    ) -> LastSentSignal:
        """
        Record a confirmed delivery and rewrite the table.

        Call only after the notifier reported success. A write failure is
        logged; the in-memory record is kept either way.
        """
        instrument = codec.normalize_instrument(instrument)
        record = LastSentSignal(
            instrument=instrument,
            signal=signal,
            buy_pct=to_decimal(value),
            sent_time=sent_time or _utc_now(),
        )
        with self._lock:
            self._last_sent[instrument] = record
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to persist last sent signal for {instrument}: {e}")

        logger.info(f"Recorded alert for {instrument}: {signal} at {record.buy_pct}%")
        return record

    # =========================================================================
    # Queries and maintenance
    # =========================================================================

    def last_sent(self, instrument: str) -> Optional[LastSentSignal]:
        with self._lock:
            return self._last_sent.get(codec.normalize_instrument(instrument))

    def clear(self, instrument: str) -> bool:
        """Forget the last delivery of an instrument (next alert is unconditional)."""
        with self._lock:
            if self._last_sent.pop(codec.normalize_instrument(instrument), None) is None:
                return False
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to persist last sent signals: {e}")
        logger.info(f"Cleared last sent signal for {instrument}")
        return True

    def prune_older_than(self, cutoff: datetime) -> int:
        """
        Remove entries sent before ``cutoff``.

        Raises:
            StorageFailure: If the table cannot be rewritten
        """
        cutoff = to_utc_seconds(cutoff)
        with self._lock:
            stale = [i for i, r in self._last_sent.items() if r.sent_time < cutoff]
            if not stale:
                return 0
            for instrument in stale:
                del self._last_sent[instrument]
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to persist pruned last sent signals: {e}")
                raise StorageFailure(f"Failed to rewrite {self.path}: {e}") from e

        logger.info(f"Removed {len(stale)} last sent signals older than {cutoff}")
        return len(stale)

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            records = list(self._last_sent.values())
        times = sorted(r.sent_time for r in records)
        return {
            "tracked_instruments": len(records),
            "threshold_pct": str(self.threshold_pct),
            "oldest_sent": times[0].isoformat() if times else None,
            "newest_sent": times[-1].isoformat() if times else None,
            "by_signal": {
                s.value: sum(1 for r in records if r.signal == s) for s in Signal
            },
        }

    def shutdown(self) -> None:
        """Persist the table and release in-memory state."""
        with self._lock:
            try:
                self._save()
            except OSError as e:
                logger.error(f"Failed to persist last sent signals on shutdown: {e}")
            self._last_sent.clear()
        logger.info("NotificationGate shut down")
