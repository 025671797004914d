"""
Mirror of the last-known-signal table into trading terminal directories.

Terminals such as MetaTrader read a small CSV from their ``Files`` folder.
The mirror is fire-and-forget: transient I/O errors are retried, and a
final failure is logged without raising.

Example:
    >>> from pathlib import Path
    >>> from fxsentiment.signals.terminal_sync import sync_to_directories
    >>> rows = [("XAUUSD", Signal.BUY, Decimal("35.4"))]
    >>> sync_to_directories([Path("C:/MT5/MQL5/Files")], rows)
    1
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Iterable, Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..storage.line_file import rewrite_lines
from ..storage.models import Signal

logger = logging.getLogger(__name__)

TERMINAL_FILE_NAME = "last_known_signals.csv"
TERMINAL_HEADER = "instrument;lastSignal;buyPct"

# Symbols renamed for the terminal's instrument naming
TERMINAL_SYMBOLS = {
    "XAUUSD": "GOLD",
    "XAGUSD": "SILBER",
}

# Retry configuration
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT = 0.5  # seconds
RETRY_MAX_WAIT = 2.0  # seconds

SignalRow = tuple[str, Signal, Optional[Decimal]]


def terminal_symbol(instrument: str) -> str:
    """Map an instrument to the terminal's symbol name."""
    key = instrument.strip().upper()
    return TERMINAL_SYMBOLS.get(key, key)


def render_terminal_lines(rows: Iterable[SignalRow]) -> list[str]:
    """Format rows as ``SYMBOL;SIGNAL;PCT`` with the buy share rounded to an integer."""
    lines = []
    for instrument, signal, buy_pct in rows:
        pct = ""
        if buy_pct is not None:
            pct = str(int(Decimal(buy_pct).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))
        lines.append(f"{terminal_symbol(instrument)};{signal.value};{pct}")
    return lines


@retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)
def write_terminal_file(target_dir: Path, lines: list[str]) -> Path:
    """
    Write the terminal file into ``target_dir``.

    Raises:
        OSError: If every attempt failed
    """
    target = Path(target_dir) / TERMINAL_FILE_NAME
    rewrite_lines(target, TERMINAL_HEADER, lines)
    return target


def sync_to_directories(directories: Iterable[Path], rows: Iterable[SignalRow]) -> int:
    """
    Mirror rows to every directory, never raising.

    Returns:
        Number of directories updated
    """
    lines = render_terminal_lines(rows)
    updated = 0
    for directory in directories:
        if not Path(directory).is_dir():
            logger.warning(f"Terminal directory does not exist: {directory}")
            continue
        try:
            target = write_terminal_file(Path(directory), lines)
            updated += 1
            logger.debug(f"Terminal file updated: {target} ({len(lines)} entries)")
        except OSError as e:
            logger.warning(f"Terminal sync to {directory} failed: {e}")
    return updated
