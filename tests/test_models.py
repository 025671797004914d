"""
Tests for the sentiment data model.

Tests cover:
- Contrarian signal derivation and signal parsing
- Transition importance classification
- Observation invariants (non-negative, UTC seconds, Decimal values)
- Transition event invariants and read-time actuality
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fxsentiment.storage.models import (
    Actuality,
    Importance,
    LastSentSignal,
    Observation,
    Signal,
    TransitionEvent,
    classify_transition,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def change_time():
    """A fixed change timestamp."""
    return datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_event(from_signal, to_signal, change_time):
    return TransitionEvent(
        instrument="EURUSD",
        from_signal=from_signal,
        to_signal=to_signal,
        change_time=change_time,
        from_buy_pct=35.0,
        to_buy_pct=62.0,
    )


# =============================================================================
# Test Signal
# =============================================================================


class TestSignal:
    """Tests for the Signal enumeration."""

    @pytest.mark.parametrize(
        "buy_pct,expected",
        [
            (75.0, Signal.SELL),
            (60.01, Signal.SELL),
            (60.0, Signal.NEUTRAL),
            (50.0, Signal.NEUTRAL),
            (40.0, Signal.NEUTRAL),
            (39.99, Signal.BUY),
            (10.0, Signal.BUY),
        ],
    )
    def test_from_sentiment(self, buy_pct, expected):
        """Test contrarian signal thresholds."""
        assert Signal.from_sentiment(buy_pct) == expected

    def test_parse_is_case_insensitive(self):
        """Test parsing lowercase names."""
        assert Signal.parse("buy") == Signal.BUY
        assert Signal.parse(" Neutral ") == Signal.NEUTRAL

    def test_parse_unknown_text(self):
        """Test unrecognized text maps to UNKNOWN."""
        assert Signal.parse("HOLD") == Signal.UNKNOWN
        assert Signal.parse("") == Signal.UNKNOWN
        assert Signal.parse(None) == Signal.UNKNOWN


# =============================================================================
# Test Classification
# =============================================================================


class TestClassifyTransition:
    """Tests for importance classification."""

    def test_reversals_are_critical(self):
        """Test BUY<->SELL flips."""
        assert classify_transition(Signal.BUY, Signal.SELL) == Importance.CRITICAL
        assert classify_transition(Signal.SELL, Signal.BUY) == Importance.CRITICAL

    def test_neutral_moves_are_high(self):
        """Test directional<->NEUTRAL changes."""
        assert classify_transition(Signal.BUY, Signal.NEUTRAL) == Importance.HIGH
        assert classify_transition(Signal.NEUTRAL, Signal.SELL) == Importance.HIGH

    def test_unknown_involvement_is_medium(self):
        """Test any change involving UNKNOWN."""
        assert classify_transition(Signal.UNKNOWN, Signal.BUY) == Importance.MEDIUM
        assert classify_transition(Signal.SELL, Signal.UNKNOWN) == Importance.MEDIUM
        assert classify_transition(Signal.NEUTRAL, Signal.UNKNOWN) == Importance.MEDIUM


# =============================================================================
# Test Observation
# =============================================================================


class TestObservation:
    """Tests for the Observation record."""

    def test_values_become_decimal(self, change_time):
        """Test float percentages are stored as exact Decimals."""
        obs = Observation("EURUSD", change_time, 62.5, 37.5, Signal.SELL)
        assert obs.buy_pct == Decimal("62.5")
        assert obs.sell_pct == Decimal("37.5")

    def test_negative_percentage_rejected(self, change_time):
        """Test negative values raise."""
        with pytest.raises(ValueError, match="Negative percentage"):
            Observation("EURUSD", change_time, -1, 50, Signal.BUY)
        with pytest.raises(ValueError):
            Observation("EURUSD", change_time, 50, -0.5, Signal.BUY)

    def test_naive_timestamp_is_utc(self):
        """Test naive datetimes are interpreted as UTC."""
        obs = Observation("EURUSD", datetime(2024, 5, 1, 10, 0), 50, 50, Signal.NEUTRAL)
        assert obs.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_timestamp_truncated_to_seconds(self):
        """Test sub-second precision is dropped."""
        ts = datetime(2024, 5, 1, 10, 0, 5, 987654, tzinfo=timezone.utc)
        obs = Observation("EURUSD", ts, 50, 50, Signal.NEUTRAL)
        assert obs.timestamp.microsecond == 0
        assert obs.timestamp.second == 5

    def test_offset_timestamp_converted(self):
        """Test aware datetimes are converted to UTC."""
        ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        obs = Observation("EURUSD", ts, 50, 50, Signal.NEUTRAL)
        assert obs.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_from_sentiment_derives_signal(self, change_time):
        """Test factory uses contrarian rule."""
        obs = Observation.from_sentiment("GBPUSD", 72, 28, change_time)
        assert obs.signal == Signal.SELL

    def test_is_consistent(self, change_time):
        """Test balance check tolerance."""
        assert Observation("EURUSD", change_time, 62.5, 37.5, Signal.SELL).is_consistent
        assert Observation("EURUSD", change_time, 50.4, 49.4, Signal.NEUTRAL).is_consistent
        assert not Observation("EURUSD", change_time, 70, 40, Signal.SELL).is_consistent

    def test_immutable(self, change_time):
        """Test observations cannot be modified."""
        obs = Observation("EURUSD", change_time, 50, 50, Signal.NEUTRAL)
        with pytest.raises(Exception):
            obs.buy_pct = Decimal("10")


# =============================================================================
# Test TransitionEvent
# =============================================================================


class TestTransitionEvent:
    """Tests for TransitionEvent."""

    def test_same_signal_rejected(self, change_time):
        """Test from_signal must differ from to_signal."""
        with pytest.raises(ValueError, match="must change signal"):
            make_event(Signal.BUY, Signal.BUY, change_time)

    def test_importance_computed(self, change_time):
        """Test importance is derived on construction."""
        assert make_event(Signal.BUY, Signal.SELL, change_time).importance == Importance.CRITICAL
        assert make_event(Signal.BUY, Signal.NEUTRAL, change_time).importance == Importance.HIGH
        assert make_event(Signal.UNKNOWN, Signal.BUY, change_time).importance == Importance.MEDIUM

    def test_is_reversal(self, change_time):
        """Test reversal helper."""
        assert make_event(Signal.SELL, Signal.BUY, change_time).is_reversal
        assert not make_event(Signal.SELL, Signal.NEUTRAL, change_time).is_reversal

    def test_actuality_very_recent(self, change_time):
        """Test changes under four hours old."""
        event = make_event(Signal.BUY, Signal.SELL, change_time)
        assert event.actuality(change_time + timedelta(hours=3, minutes=59)) == Actuality.VERY_RECENT

    def test_actuality_recent_same_day(self):
        """Test older changes on the same UTC day."""
        event = make_event(Signal.BUY, Signal.SELL, datetime(2024, 5, 1, 1, 0, tzinfo=timezone.utc))
        now = datetime(2024, 5, 1, 23, 0, tzinfo=timezone.utc)
        assert event.actuality(now) == Actuality.RECENT

    def test_actuality_this_week(self):
        """Test changes from previous days within a week."""
        event = make_event(Signal.BUY, Signal.SELL, datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc))
        assert event.actuality(datetime(2024, 5, 2, 3, 0, tzinfo=timezone.utc)) == Actuality.THIS_WEEK
        assert event.actuality(datetime(2024, 5, 7, 21, 0, tzinfo=timezone.utc)) == Actuality.THIS_WEEK

    def test_actuality_older(self, change_time):
        """Test changes a week or more old."""
        event = make_event(Signal.BUY, Signal.SELL, change_time)
        assert event.actuality(change_time + timedelta(days=10)) == Actuality.OLDER

    def test_is_within_hours(self, change_time):
        """Test age filter."""
        event = make_event(Signal.BUY, Signal.SELL, change_time)
        assert event.is_within_hours(2, change_time + timedelta(hours=2))
        assert not event.is_within_hours(2, change_time + timedelta(hours=2, seconds=1))

    def test_to_dict(self, change_time):
        """Test dictionary conversion."""
        data = make_event(Signal.BUY, Signal.SELL, change_time).to_dict(change_time)
        assert data["instrument"] == "EURUSD"
        assert data["importance"] == "critical"
        assert data["actuality"] == "very_recent"
        assert data["from_buy_pct"] == "35.0"

    def test_describe(self, change_time):
        """Test summary line."""
        text = make_event(Signal.BUY, Signal.SELL, change_time).describe()
        assert "EURUSD: BUY -> SELL" in text
        assert "CRITICAL" in text


class TestLastSentSignal:
    """Tests for LastSentSignal."""

    def test_normalizes_values(self):
        """Test Decimal conversion and UTC timestamp."""
        record = LastSentSignal("EURUSD", Signal.BUY, 55.0, datetime(2024, 5, 1, 10, 0, 0, 500))
        assert record.buy_pct == Decimal("55.0")
        assert record.sent_time.tzinfo == timezone.utc
        assert record.sent_time.microsecond == 0
