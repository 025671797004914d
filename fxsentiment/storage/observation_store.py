"""
Per-instrument observation store.

Append-only, file-backed time series of sentiment observations. Every
instrument gets its own ``<KEY>.dat`` file and its own lock, so writers for
different instruments never wait on each other.

Features:
- Lazily created per-instrument locks (registry guarded by a short lock)
- Duplicate suppression against a bounded tail window of recent records
- Header written for new files and re-written when the schema changes
- Tolerant decoding (malformed lines are skipped with a warning)
- Retention pruning with atomic file replacement
- Validation, statistics and export helpers

Example:
    >>> from pathlib import Path
    >>> from fxsentiment.storage import ObservationStore, Observation
    >>>
    >>> store = ObservationStore(Path("data/observations"))
    >>> store.append(Observation.from_sentiment("EURUSD", 62.5, 37.5))
    True
    >>> latest = store.read_last("EURUSD", 10)
    >>> summary = store.append_many(batch)
    >>> result = store.prune_older_than_days(30)
"""

import logging
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from . import codec
from .line_file import (
    append_line,
    ensure_header,
    first_line,
    read_lines,
    rewrite_lines,
    tail_lines,
)
from .models import MalformedRecord, Observation, StorageFailure, to_utc_seconds

logger = logging.getLogger(__name__)

FILE_SUFFIX = ".dat"
DEFAULT_DUPLICATE_WINDOW = 5


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class AppendSummary:
    """
    Outcome of a batch append.

    Attributes:
        written: Records appended.
        duplicates: Records skipped as duplicates.
        failed: Records that raised StorageFailure.
        errors: Error message per failed instrument.
    """

    written: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.written + self.duplicates + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "written": self.written,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "errors": dict(self.errors),
        }


@dataclass
class PruneResult:
    """
    Outcome of a retention run.

    Attributes:
        removed: Records removed per instrument key.
        kept: Records kept per instrument key.
        failed: Error message per instrument key that could not be pruned.
        malformed: Undecodable lines left in place per instrument key.
    """

    removed: dict[str, int] = field(default_factory=dict)
    kept: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    malformed: dict[str, int] = field(default_factory=dict)

    @property
    def total_removed(self) -> int:
        return sum(self.removed.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed": dict(self.removed),
            "kept": dict(self.kept),
            "failed": dict(self.failed),
            "malformed": dict(self.malformed),
            "total_removed": self.total_removed,
        }


@dataclass
class ValidationResult:
    """
    Consistency report for one instrument file.

    Attributes:
        instrument: Instrument key.
        record_count: Decodable records.
        invalid_count: Records failing the consistency check.
        malformed_count: Lines that could not be decoded.
    """

    instrument: str
    record_count: int = 0
    invalid_count: int = 0
    malformed_count: int = 0

    @property
    def is_valid(self) -> bool:
        return self.invalid_count == 0 and self.malformed_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "record_count": self.record_count,
            "invalid_count": self.invalid_count,
            "malformed_count": self.malformed_count,
            "is_valid": self.is_valid,
        }


class ObservationStore:
    """
    Durable per-instrument storage of observations.

    All mutations of an instrument's file (append, prune, rewrite) hold that
    instrument's lock. Reads are not locked; appends are single-write lines
    so a reader sees either the whole newest line or none of it.

    Attributes:
        directory: Directory holding one ``<KEY>.dat`` file per instrument.
        duplicate_window: Number of trailing records checked for duplicates.
    """

    def __init__(self, directory: Path, duplicate_window: int = DEFAULT_DUPLICATE_WINDOW):
        """
        Initialize the store.

        Args:
            directory: Backing directory (created on first write)
            duplicate_window: Trailing records compared on append (default 5)
        """
        self.directory = Path(directory)
        self.duplicate_window = duplicate_window

        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # =========================================================================
    # Paths and locks
    # =========================================================================

    def path_for(self, instrument: str) -> Path:
        """Return the backing file of ``instrument``."""
        return self.directory / f"{codec.normalize_instrument(instrument)}{FILE_SUFFIX}"

    def lock_for(self, instrument: str) -> threading.Lock:
        """Return the shared lock of ``instrument``, creating it on first use."""
        key = codec.normalize_instrument(instrument)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # =========================================================================
    # Writes
    # =========================================================================

    def append(self, observation: Observation) -> bool:
        """
        Append one observation to its instrument's file.

        Args:
            observation: Reading to persist

        Returns:
            True if written, False if it duplicated a recent record

        Raises:
            StorageFailure: On any I/O error
        """
        key = codec.normalize_instrument(observation.instrument)
        path = self.path_for(key)
        line = codec.encode_observation(observation)

        with self.lock_for(key):
            try:
                self.directory.mkdir(parents=True, exist_ok=True)

                if self._is_recent_duplicate(path, line):
                    logger.debug(f"Skipping duplicate observation for {key}: {line}")
                    return False

                had_content = first_line(path) is not None
                if ensure_header(path, codec.OBSERVATION_HEADER) and had_content:
                    logger.warning(f"Header mismatch in {path.name}, rewrote with current header")

                append_line(path, line)
                logger.debug(f"Stored observation for {key}: {line}")
                return True

            except OSError as e:
                logger.error(f"Failed to store observation for {key}: {e}")
                raise StorageFailure(f"Failed to append to {path}: {e}") from e

    def _is_recent_duplicate(self, path: Path, line: str) -> bool:
        recent = [
            entry for entry in tail_lines(path, self.duplicate_window + 1)
            if not codec.is_header(entry)
        ]
        return line in recent[-self.duplicate_window:]

    def append_many(self, observations: Iterable[Observation]) -> AppendSummary:
        """
        Append a batch, isolating failures per instrument.

        Args:
            observations: Readings to persist

        Returns:
            AppendSummary with written/duplicate/failed counts
        """
        summary = AppendSummary()
        for obs in observations:
            try:
                if self.append(obs):
                    summary.written += 1
                else:
                    summary.duplicates += 1
            except StorageFailure as e:
                summary.failed += 1
                summary.errors[obs.instrument] = str(e)

        logger.info(
            f"Stored batch: {summary.written} written, {summary.duplicates} duplicates, "
            f"{summary.failed} failed"
        )
        return summary

    # =========================================================================
    # Reads
    # =========================================================================

    def _decode(self, key: str, lines: Iterable[str]) -> list[Observation]:
        records = []
        for line in lines:
            if codec.is_header(line):
                continue
            try:
                records.append(codec.decode_observation(key, line))
            except MalformedRecord as e:
                logger.warning(f"Skipping malformed record in {key}: {e}")
        return records

    def read_all(self, instrument: str) -> list[Observation]:
        """
        Read every stored observation of an instrument, oldest first.

        Raises:
            StorageFailure: If the file exists but cannot be read
        """
        key = codec.normalize_instrument(instrument)
        path = self.path_for(key)
        try:
            lines = read_lines(path)
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            raise StorageFailure(f"Failed to read {path}: {e}") from e
        return self._decode(key, lines)

    def read_last(self, instrument: str, count: int) -> list[Observation]:
        """
        Read the newest ``count`` observations, newest first.

        Only the tail of the file is scanned. If malformed or header lines
        leave fewer than ``count`` records, the whole file is read instead.
        """
        if count <= 0:
            return []

        key = codec.normalize_instrument(instrument)
        path = self.path_for(key)
        try:
            records = self._decode(key, tail_lines(path, count))
            if len(records) < count and path.exists():
                records = self._decode(key, read_lines(path))
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            raise StorageFailure(f"Failed to read {path}: {e}") from e

        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:count]

    def latest(self, instrument: str) -> Optional[Observation]:
        records = self.read_last(instrument, 1)
        return records[0] if records else None

    def list_instruments(self) -> list[str]:
        """List instrument keys that have a backing file."""
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{FILE_SUFFIX}") if p.is_file())

    # =========================================================================
    # Retention
    # =========================================================================

    def prune_older_than(self, cutoff: datetime) -> PruneResult:
        """
        Remove records with a timestamp before ``cutoff`` for every instrument.

        Each file is rewritten atomically while holding its instrument lock.
        A failure on one instrument is recorded and the rest continue.
        Lines that do not decode are kept and counted as malformed.

        Args:
            cutoff: Oldest timestamp to keep (naive values are UTC)

        Returns:
            PruneResult with per-instrument removed/kept counts
        """
        cutoff = to_utc_seconds(cutoff)
        result = PruneResult()

        for key in self.list_instruments():
            path = self.path_for(key)
            with self.lock_for(key):
                try:
                    kept, removed, malformed = self._retain(key, read_lines(path), cutoff)
                    if removed:
                        rewrite_lines(path, codec.OBSERVATION_HEADER, kept)
                        logger.info(f"Pruned {removed} records from {key}")
                    result.removed[key] = removed
                    result.kept[key] = len(kept) - malformed
                    if malformed:
                        result.malformed[key] = malformed
                except OSError as e:
                    logger.error(f"Failed to prune {key}: {e}")
                    result.failed[key] = str(e)

        return result

    def _retain(self, key: str, lines: list[str], cutoff: datetime) -> tuple[list[str], int, int]:
        # Lines that do not decode are kept as they are; only retention deletes.
        kept: list[str] = []
        removed = malformed = 0
        for line in lines:
            if codec.is_header(line):
                continue
            try:
                record = codec.decode_observation(key, line)
            except MalformedRecord as e:
                logger.warning(f"Keeping malformed record in {key}: {e}")
                kept.append(line)
                malformed += 1
                continue
            if record.timestamp >= cutoff:
                kept.append(codec.encode_observation(record))
            else:
                removed += 1
        return kept, removed, malformed

    def prune_older_than_days(self, days: int) -> PruneResult:
        """Remove records older than ``days`` days."""
        return self.prune_older_than(_utc_now() - timedelta(days=days))

    # =========================================================================
    # Validation and statistics
    # =========================================================================

    def validate(self) -> dict[str, ValidationResult]:
        """
        Check every instrument file for inconsistent or malformed records.

        A record is invalid if a percentage is negative or buy + sell is
        outside 99-101.
        """
        results = {}
        for key in self.list_instruments():
            result = ValidationResult(instrument=key)
            try:
                lines = read_lines(self.path_for(key))
            except OSError as e:
                logger.error(f"Failed to read {key} for validation: {e}")
                result.malformed_count = -1
                results[key] = result
                continue

            for line in lines:
                if codec.is_header(line):
                    continue
                try:
                    obs = codec.decode_observation(key, line)
                except MalformedRecord:
                    result.malformed_count += 1
                    continue
                result.record_count += 1
                if not obs.is_consistent:
                    result.invalid_count += 1

            if not result.is_valid:
                logger.warning(
                    f"Validation issues in {key}: {result.invalid_count} invalid, "
                    f"{result.malformed_count} malformed"
                )
            results[key] = result
        return results

    def statistics(self, instrument: str) -> dict[str, Any]:
        """Record count, time range and latest reading of one instrument."""
        key = codec.normalize_instrument(instrument)
        records = self.read_all(key)
        if not records:
            return {"instrument": key, "record_count": 0, "first": None, "last": None, "latest": None}

        ordered = sorted(records, key=lambda r: r.timestamp)
        return {
            "instrument": key,
            "record_count": len(ordered),
            "first": ordered[0].timestamp.isoformat(),
            "last": ordered[-1].timestamp.isoformat(),
            "latest": ordered[-1].to_dict(),
        }

    def overall_statistics(self) -> dict[str, Any]:
        """Totals across all instruments."""
        instruments = self.list_instruments()
        per_instrument = {}
        for key in instruments:
            try:
                per_instrument[key] = len(self.read_all(key))
            except StorageFailure:
                per_instrument[key] = 0
        return {
            "directory": str(self.directory),
            "instrument_count": len(instruments),
            "total_records": sum(per_instrument.values()),
            "records_per_instrument": per_instrument,
        }

    def export(self, instrument: str, target: Path) -> Path:
        """
        Copy an instrument's file to ``target``.

        Raises:
            StorageFailure: If the instrument has no file or the copy fails
        """
        key = codec.normalize_instrument(instrument)
        source = self.path_for(key)
        if not source.exists():
            raise StorageFailure(f"No data stored for {key}")

        target = Path(target)
        with self.lock_for(key):
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, target)
            except OSError as e:
                logger.error(f"Failed to export {key} to {target}: {e}")
                raise StorageFailure(f"Failed to export {key}: {e}") from e

        logger.info(f"Exported {key} to {target}")
        return target
