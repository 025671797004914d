"""Loading observation batches from JSON lines files."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..storage.models import Observation, Signal

logger = logging.getLogger(__name__)


def observation_from_dict(data: dict[str, Any]) -> Observation:
    """
    Build an observation from a dictionary.

    Expected keys: ``instrument``, ``buy_pct`` and optionally ``sell_pct``
    (default ``100 - buy_pct``), ``timestamp`` (ISO 8601, default now) and
    ``signal`` (default derived from ``buy_pct``).

    Raises:
        KeyError: If instrument or buy_pct is missing
        TypeError: If ``data`` is not a JSON object
        ValueError: If a value cannot be parsed
    """
    if not isinstance(data, dict):
        raise TypeError(f"Expected a JSON object, got {type(data).__name__}")
    buy_pct = data["buy_pct"]
    sell_pct = data.get("sell_pct")
    if sell_pct is None:
        sell_pct = 100 - float(buy_pct)

    timestamp = data.get("timestamp")
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))

    obs = Observation.from_sentiment(data["instrument"], buy_pct, sell_pct, timestamp)
    if data.get("signal"):
        obs = Observation(
            instrument=obs.instrument,
            timestamp=obs.timestamp,
            buy_pct=obs.buy_pct,
            sell_pct=obs.sell_pct,
            signal=Signal.parse(data["signal"]),
        )
    return obs


def load_observations(path: Path) -> list[Observation]:
    """
    Read observations from a JSON lines file.

    Lines that fail to parse are logged and skipped.
    """
    observations = []
    with open(path, encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                observations.append(observation_from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning(f"Skipping line {number} of {path}: {e}")
    logger.info(f"Loaded {len(observations)} observations from {path}")
    return observations
