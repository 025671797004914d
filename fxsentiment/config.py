"""Configuration management for the FX sentiment signal pipeline."""
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from dotenv import load_dotenv

from .storage.models import ConfigurationError

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory (observations/ and changes/ live below it)
DATA_DIR = Path(os.getenv("SENTIMENT_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = PROJECT_ROOT / "logs"

# =============================================================================
# NOTIFICATION GATE
# =============================================================================

# Minimum move in buy percentage (points) since the last sent alert
SIGNAL_THRESHOLD_PCT = float(os.getenv("SIGNAL_THRESHOLD_PCT", "3.0"))

# Accepted range for the threshold
MIN_SIGNAL_THRESHOLD_PCT = 0.1
MAX_SIGNAL_THRESHOLD_PCT = 50.0

# =============================================================================
# STORAGE
# =============================================================================

# Records older than this are removed by cleanup runs
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "30"))

# Number of trailing records compared for duplicate suppression
DUPLICATE_WINDOW = int(os.getenv("DUPLICATE_WINDOW", "5"))

# Transition events cached per instrument
HISTORY_CACHE_SIZE = int(os.getenv("HISTORY_CACHE_SIZE", "100"))

# =============================================================================
# TERMINAL SYNC
# =============================================================================

# Trading terminal "Files" directories that receive the signal snapshot
TERMINAL_SYNC_DIRS = [
    Path(p) for p in os.getenv("TERMINAL_SYNC_DIRS", "").split(os.pathsep) if p.strip()
]

# =============================================================================
# WEBHOOK NOTIFIER
# =============================================================================

WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")
WEBHOOK_FORMAT = os.getenv("WEBHOOK_FORMAT", "generic")  # "generic" or "slack"


def validate_threshold(value) -> Decimal:
    """
    Validate a signal threshold and return it as a Decimal.

    Args:
        value: Threshold in percentage points (float, str or Decimal)

    Returns:
        The threshold as Decimal

    Raises:
        ConfigurationError: If the value is not a number or outside the
            accepted range.
    """
    try:
        threshold = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ConfigurationError(f"Signal threshold is not a number: {value!r}") from e

    if not threshold.is_finite():
        raise ConfigurationError(f"Signal threshold is not finite: {value!r}")

    low = Decimal(str(MIN_SIGNAL_THRESHOLD_PCT))
    high = Decimal(str(MAX_SIGNAL_THRESHOLD_PCT))
    if threshold < low or threshold > high:
        raise ConfigurationError(
            f"Signal threshold {threshold} outside allowed range {low}-{high}"
        )
    return threshold
