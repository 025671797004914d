"""
Core data model for sentiment observations and signal transitions.

This module defines the value types shared by the observation store, the
transition detector and the notification gate, together with the exception
hierarchy used across the package.

Features:
- Signal enumeration with the contrarian sentiment rule
- Immutable observations with Decimal percentages and UTC second precision
- Transition events with importance classification and read-time actuality
- Last-sent records for the notification gate

Example:
    >>> from datetime import datetime, timezone
    >>> from fxsentiment.storage.models import Observation, Signal, TransitionEvent
    >>>
    >>> obs = Observation("EURUSD", datetime.now(timezone.utc), 62.5, 37.5, Signal.SELL)
    >>> event = TransitionEvent(
    ...     instrument="EURUSD",
    ...     from_signal=Signal.BUY,
    ...     to_signal=Signal.SELL,
    ...     change_time=obs.timestamp,
    ...     from_buy_pct=35.0,
    ...     to_buy_pct=62.5,
    ... )
    >>> event.importance
    <Importance.CRITICAL: 'critical'>
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

# Contrarian thresholds on the retail buy share
CROWD_LONG_PCT = Decimal("60")
CROWD_SHORT_PCT = Decimal("40")

# Tolerance for buy + sell percentages (rounding on the source side)
BALANCE_MIN_PCT = Decimal("99")
BALANCE_MAX_PCT = Decimal("101")

VERY_RECENT_HOURS = 4
THIS_WEEK_DAYS = 7


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def to_utc_seconds(ts: datetime) -> datetime:
    """Return ``ts`` as an aware UTC datetime truncated to whole seconds.

    Naive datetimes are interpreted as UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.replace(microsecond=0)


def to_decimal(value: Any) -> Decimal:
    """Convert a float/str/int/Decimal percentage to Decimal."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# Exceptions
# =============================================================================


class SentimentStoreError(Exception):
    """Base exception for sentiment pipeline errors."""

    pass


class StorageFailure(SentimentStoreError):
    """Raised when reading or writing a backing file fails."""

    pass


class MalformedRecord(SentimentStoreError):
    """Raised when a stored line cannot be decoded."""

    pass


class ConfigurationError(SentimentStoreError):
    """Raised when a configuration value is rejected."""

    pass


# =============================================================================
# Enumerations
# =============================================================================


class Signal(Enum):
    """Trading signal of an instrument."""

    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value

    @property
    def is_directional(self) -> bool:
        return self in (Signal.BUY, Signal.SELL)

    @classmethod
    def parse(cls, text: Optional[str]) -> "Signal":
        """Parse a signal name, falling back to UNKNOWN."""
        if not text:
            return cls.UNKNOWN
        try:
            return cls(text.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_sentiment(cls, buy_pct: Any) -> "Signal":
        """
        Derive the contrarian signal from the crowd's buy share.

        A crowd that is mostly long yields SELL, a crowd that is mostly
        short yields BUY.

        Args:
            buy_pct: Percentage of traders long the instrument.

        Returns:
            SELL above 60%, BUY below 40%, NEUTRAL otherwise.
        """
        buy = to_decimal(buy_pct)
        if buy > CROWD_LONG_PCT:
            return cls.SELL
        if buy < CROWD_SHORT_PCT:
            return cls.BUY
        return cls.NEUTRAL


class Importance(Enum):
    """Urgency of a signal transition."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class Actuality(Enum):
    """Freshness bucket of a transition, computed at read time."""

    VERY_RECENT = "very_recent"
    RECENT = "recent"
    THIS_WEEK = "this_week"
    OLDER = "older"

    def __str__(self) -> str:
        return self.value


def classify_transition(from_signal: Signal, to_signal: Signal) -> Importance:
    """
    Classify a signal change.

    BUY<->SELL is CRITICAL, BUY/SELL<->NEUTRAL is HIGH and any other change
    (anything involving UNKNOWN) is MEDIUM. LOW is never assigned here.
    """
    if from_signal.is_directional and to_signal.is_directional:
        return Importance.CRITICAL
    pair = {from_signal, to_signal}
    if Signal.NEUTRAL in pair and (pair - {Signal.NEUTRAL}) <= {Signal.BUY, Signal.SELL}:
        return Importance.HIGH
    return Importance.MEDIUM


def actuality_of(change_time: datetime, now: Optional[datetime] = None) -> Actuality:
    """Bucket a timestamp by age relative to ``now``."""
    now = to_utc_seconds(now or _utc_now())
    change_time = to_utc_seconds(change_time)
    age = now - change_time
    if age < timedelta(hours=VERY_RECENT_HOURS):
        return Actuality.VERY_RECENT
    if change_time.date() == now.date():
        return Actuality.RECENT
    if age < timedelta(days=THIS_WEEK_DAYS):
        return Actuality.THIS_WEEK
    return Actuality.OLDER


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class Observation:
    """
    One sentiment reading for one instrument.

    Attributes:
        instrument: Instrument identifier (e.g., 'EURUSD').
        timestamp: Reading time, UTC with second precision.
        buy_pct: Share of traders long, 0-100.
        sell_pct: Share of traders short, 0-100.
        signal: Trading signal derived from the reading.
    """

    instrument: str
    timestamp: datetime
    buy_pct: Decimal
    sell_pct: Decimal
    signal: Signal

    def __post_init__(self):
        object.__setattr__(self, "instrument", str(self.instrument).strip())
        object.__setattr__(self, "timestamp", to_utc_seconds(self.timestamp))
        object.__setattr__(self, "buy_pct", to_decimal(self.buy_pct))
        object.__setattr__(self, "sell_pct", to_decimal(self.sell_pct))
        if not isinstance(self.signal, Signal):
            object.__setattr__(self, "signal", Signal.parse(str(self.signal)))

        if self.buy_pct < 0 or self.sell_pct < 0:
            raise ValueError(
                f"Negative percentage for {self.instrument}: "
                f"buy={self.buy_pct} sell={self.sell_pct}"
            )

    @classmethod
    def from_sentiment(
        cls,
        instrument: str,
        buy_pct: Any,
        sell_pct: Any,
        timestamp: Optional[datetime] = None,
    ) -> "Observation":
        """Build an observation whose signal follows the contrarian rule."""
        return cls(
            instrument=instrument,
            timestamp=timestamp or _utc_now(),
            buy_pct=to_decimal(buy_pct),
            sell_pct=to_decimal(sell_pct),
            signal=Signal.from_sentiment(buy_pct),
        )

    @property
    def is_consistent(self) -> bool:
        """True when percentages are non-negative and sum to roughly 100."""
        total = self.buy_pct + self.sell_pct
        return (
            self.buy_pct >= 0
            and self.sell_pct >= 0
            and BALANCE_MIN_PCT <= total <= BALANCE_MAX_PCT
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert observation to dictionary representation."""
        return {
            "instrument": self.instrument,
            "timestamp": self.timestamp.isoformat(),
            "buy_pct": str(self.buy_pct),
            "sell_pct": str(self.sell_pct),
            "signal": self.signal.value,
        }


@dataclass(frozen=True)
class TransitionEvent:
    """
    A change of signal between two consecutive observations.

    Attributes:
        instrument: Instrument identifier.
        from_signal: Previously known signal.
        to_signal: Newly observed signal.
        change_time: Timestamp of the observation that carried the change.
        from_buy_pct: Buy share before the change.
        to_buy_pct: Buy share of the new observation.
        importance: Urgency derived from the signal pair.
    """

    instrument: str
    from_signal: Signal
    to_signal: Signal
    change_time: datetime
    from_buy_pct: Decimal
    to_buy_pct: Decimal
    importance: Importance = field(init=False)

    def __post_init__(self):
        if self.from_signal == self.to_signal:
            raise ValueError(
                f"Transition for {self.instrument} must change signal "
                f"(got {self.from_signal} -> {self.to_signal})"
            )
        object.__setattr__(self, "change_time", to_utc_seconds(self.change_time))
        object.__setattr__(self, "from_buy_pct", to_decimal(self.from_buy_pct))
        object.__setattr__(self, "to_buy_pct", to_decimal(self.to_buy_pct))
        object.__setattr__(
            self, "importance", classify_transition(self.from_signal, self.to_signal)
        )

    @property
    def is_reversal(self) -> bool:
        """True for a direct BUY<->SELL flip."""
        return self.importance == Importance.CRITICAL

    def actuality(self, now: Optional[datetime] = None) -> Actuality:
        return actuality_of(self.change_time, now)

    def is_within_hours(self, hours: float, now: Optional[datetime] = None) -> bool:
        now = to_utc_seconds(now or _utc_now())
        return now - self.change_time <= timedelta(hours=hours)

    def describe(self) -> str:
        """Human readable one-line summary."""
        return (
            f"{self.instrument}: {self.from_signal} -> {self.to_signal} "
            f"({self.from_buy_pct:.2f}% -> {self.to_buy_pct:.2f}% buy) "
            f"[{self.importance.name}]"
        )

    def to_dict(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Convert event to dictionary representation."""
        return {
            "instrument": self.instrument,
            "from_signal": self.from_signal.value,
            "to_signal": self.to_signal.value,
            "change_time": self.change_time.isoformat(),
            "from_buy_pct": str(self.from_buy_pct),
            "to_buy_pct": str(self.to_buy_pct),
            "importance": self.importance.value,
            "actuality": self.actuality(now).value,
        }


@dataclass
class LastSentSignal:
    """
    The most recent observation an alert was actually sent for.

    Attributes:
        instrument: Instrument identifier.
        signal: Signal that was notified.
        buy_pct: Buy share at the time of the alert.
        sent_time: When the alert was confirmed sent.
    """

    instrument: str
    signal: Signal
    buy_pct: Decimal
    sent_time: datetime

    def __post_init__(self):
        self.buy_pct = to_decimal(self.buy_pct)
        self.sent_time = to_utc_seconds(self.sent_time)

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary representation."""
        return {
            "instrument": self.instrument,
            "signal": self.signal.value,
            "buy_pct": str(self.buy_pct),
            "sent_time": self.sent_time.isoformat(),
        }
