"""
Tests for the line codec and line file helpers.

Tests cover:
- Instrument key normalization
- Observation, transition, snapshot and last-sent line formats
- Tolerant decoding (decimal comma, malformed lines)
- Tail reads, header handling and atomic rewrites
"""

import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from fxsentiment.storage import codec, line_file
from fxsentiment.storage.models import (
    LastSentSignal,
    MalformedRecord,
    Observation,
    Signal,
    TransitionEvent,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def tmp_path_dir():
    """Provide a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def ts():
    return datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Test Normalization
# =============================================================================


class TestNormalizeInstrument:
    """Tests for normalize_instrument."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("EURUSD", "EURUSD"),
            ("eur/usd", "EUR_USD"),
            ("  __xau-usd__ ", "XAU_USD"),
            ("gbp--//jpy", "GBP_JPY"),
            ("///", "UNKNOWN"),
            ("", "UNKNOWN"),
            (None, "UNKNOWN"),
        ],
    )
    def test_normalize(self, raw, expected):
        """Test filesystem-safe keys."""
        assert codec.normalize_instrument(raw) == expected


# =============================================================================
# Test Observation Lines
# =============================================================================


class TestObservationLines:
    """Tests for observation encoding/decoding."""

    def test_encode(self, ts):
        """Test the on-disk format."""
        obs = Observation("EURUSD", ts, 62.5, 37.5, Signal.SELL)
        assert codec.encode_observation(obs) == "2024-05-01 10:00:00;62.50;37.50;SELL"

    def test_encode_converts_to_utc(self):
        """Test offset timestamps are written in UTC."""
        local = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        obs = Observation("EURUSD", local, 50, 50, Signal.NEUTRAL)
        assert codec.encode_observation(obs).startswith("2024-05-01 10:00:00;")

    def test_encode_rounds_half_up(self, ts):
        """Test two-decimal rounding."""
        obs = Observation("EURUSD", ts, "33.335", "66.665", Signal.BUY)
        assert codec.encode_observation(obs) == "2024-05-01 10:00:00;33.34;66.67;BUY"

    def test_decode(self, ts):
        """Test decoding a record line."""
        obs = codec.decode_observation("EURUSD", "2024-05-01 10:00:00;62.50;37.50;SELL")
        assert obs.instrument == "EURUSD"
        assert obs.timestamp == ts
        assert obs.buy_pct == Decimal("62.50")
        assert obs.signal == Signal.SELL

    def test_decode_decimal_comma(self):
        """Test locale-style decimal commas are accepted."""
        obs = codec.decode_observation("EURUSD", "2024-05-01 10:00:00;62,50;37,50;SELL")
        assert obs.buy_pct == Decimal("62.50")
        assert obs.sell_pct == Decimal("37.50")

    @pytest.mark.parametrize(
        "line",
        [
            "2024-05-01 10:00:00;62.50;SELL",
            "not-a-date;62.50;37.50;SELL",
            "2024-05-01 10:00:00;abc;37.50;SELL",
            "2024-05-01 10:00:00;-5.00;37.50;SELL",
            "2024-05-01 10:00:00;NaN;37.50;SELL",
        ],
    )
    def test_decode_malformed(self, line):
        """Test bad lines raise MalformedRecord."""
        with pytest.raises(MalformedRecord):
            codec.decode_observation("EURUSD", line)

    def test_decode_unknown_signal(self):
        """Test unrecognized signal text becomes UNKNOWN."""
        obs = codec.decode_observation("EURUSD", "2024-05-01 10:00:00;50.00;50.00;WAIT")
        assert obs.signal == Signal.UNKNOWN


# =============================================================================
# Test Change Files
# =============================================================================


class TestChangeLines:
    """Tests for history, snapshot and last-sent lines."""

    def test_transition_line(self, ts):
        """Test transition encoding and decoding."""
        event = TransitionEvent("EURUSD", Signal.BUY, Signal.SELL, ts, 35, 62.5)
        line = codec.encode_transition(event)
        assert line == "EURUSD;BUY;SELL;2024-05-01 10:00:00;35.00;62.50"

        decoded = codec.decode_transition(line)
        assert decoded.from_signal == Signal.BUY
        assert decoded.to_signal == Signal.SELL
        assert decoded.change_time == ts

    def test_transition_without_change_is_malformed(self):
        """Test a stored no-op transition is rejected."""
        with pytest.raises(MalformedRecord):
            codec.decode_transition("EURUSD;BUY;BUY;2024-05-01 10:00:00;35.00;36.00")

    def test_snapshot_entry(self):
        """Test snapshot lines."""
        assert codec.encode_snapshot_entry("EURUSD", Signal.BUY) == "EURUSD;BUY"
        assert codec.decode_snapshot_entry("GBPUSD;NEUTRAL") == ("GBPUSD", Signal.NEUTRAL)

    def test_snapshot_entry_malformed(self):
        """Test snapshot lines with missing fields."""
        with pytest.raises(MalformedRecord):
            codec.decode_snapshot_entry("EURUSD")
        with pytest.raises(MalformedRecord):
            codec.decode_snapshot_entry(";BUY")

    def test_last_sent_line(self, ts):
        """Test last-sent lines."""
        record = LastSentSignal("EURUSD", Signal.SELL, 60, ts)
        line = codec.encode_last_sent(record)
        assert line == "EURUSD;SELL;60.00;2024-05-01 10:00:00"

        decoded = codec.decode_last_sent(line)
        assert decoded.buy_pct == Decimal("60.00")
        assert decoded.sent_time == ts

    def test_is_header(self):
        """Test header detection."""
        assert codec.is_header(codec.OBSERVATION_HEADER)
        assert codec.is_header(codec.LASTSENT_HEADER + "\n")
        assert not codec.is_header("EURUSD;BUY")

    def test_looks_like_header(self):
        """Test legacy column-name lines are told apart from records."""
        assert codec.looks_like_header(codec.HISTORY_HEADER)
        assert codec.looks_like_header("time;buy;sell;signal")
        assert not codec.looks_like_header("2024-05-01 10:00:00;35.00;65.00;BUY")
        assert not codec.looks_like_header("EURUSD;BUY;SELL;2024-05-01 10:00:00;35.00;62.50")

    def test_undecodable_bytes_are_malformed(self):
        """Test lines carrying replacement characters are rejected."""
        with pytest.raises(MalformedRecord, match="Undecodable"):
            codec.decode_snapshot_entry("GBP\ufffdUSD;SELL")


# =============================================================================
# Test Line Files
# =============================================================================


class TestLineFile:
    """Tests for line file helpers."""

    def test_tail_lines(self, tmp_path_dir):
        """Test reading the last lines."""
        path = tmp_path_dir / "data.dat"
        line_file.append_lines(path, [f"line-{i:02d}" for i in range(10)])

        assert line_file.tail_lines(path, 3) == ["line-07", "line-08", "line-09"]
        assert len(line_file.tail_lines(path, 50)) == 10
        assert line_file.tail_lines(path, 0) == []

    def test_tail_lines_small_blocks(self, tmp_path_dir, monkeypatch):
        """Test tail reads spanning several blocks."""
        monkeypatch.setattr(line_file, "TAIL_BLOCK_SIZE", 5)
        path = tmp_path_dir / "data.dat"
        line_file.append_lines(path, [f"record-{i}" for i in range(20)])

        assert line_file.tail_lines(path, 4) == ["record-16", "record-17", "record-18", "record-19"]

    def test_tail_lines_missing_file(self, tmp_path_dir):
        """Test missing files yield nothing."""
        assert line_file.tail_lines(tmp_path_dir / "missing.dat", 5) == []

    def test_first_line(self, tmp_path_dir):
        """Test first line helper on missing, empty and filled files."""
        path = tmp_path_dir / "data.dat"
        assert line_file.first_line(path) is None
        path.write_text("")
        assert line_file.first_line(path) is None
        path.write_text("header\nrow\n")
        assert line_file.first_line(path) == "header"

    def test_ensure_header_new_file(self, tmp_path_dir):
        """Test header is written to a new file."""
        path = tmp_path_dir / "data.dat"
        assert line_file.ensure_header(path, "a;b") is True
        assert line_file.ensure_header(path, "a;b") is False
        assert path.read_text() == "a;b\n"

    def test_ensure_header_mismatch(self, tmp_path_dir):
        """Test a different header is replaced and data kept."""
        path = tmp_path_dir / "data.dat"
        path.write_text("old;header\nrow-1\n")

        assert line_file.ensure_header(path, "a;b") is True
        assert line_file.read_lines(path) == ["a;b", "row-1"]

    def test_ensure_header_headerless_file(self, tmp_path_dir):
        """Test a file without header gets one prepended and keeps every record."""
        path = tmp_path_dir / "data.dat"
        path.write_text("2024-05-01 10:00:00;35.00;65.00;BUY\n2024-05-01 11:00:00;36.00;64.00;BUY\n")

        assert line_file.ensure_header(path, codec.OBSERVATION_HEADER) is True
        assert line_file.read_lines(path) == [
            codec.OBSERVATION_HEADER,
            "2024-05-01 10:00:00;35.00;65.00;BUY",
            "2024-05-01 11:00:00;36.00;64.00;BUY",
        ]

    def test_read_lines_replaces_undecodable_bytes(self, tmp_path_dir):
        """Test a corrupt byte does not abort the read."""
        path = tmp_path_dir / "data.dat"
        path.write_bytes(b"a;b\nGBP\xffUSD;SELL\nEURUSD;BUY\n")

        lines = line_file.read_lines(path)
        assert lines[0] == "a;b"
        assert codec.REPLACEMENT_CHAR in lines[1]
        assert lines[2] == "EURUSD;BUY"

    def test_rewrite_leaves_no_temp_files(self, tmp_path_dir):
        """Test atomic rewrite cleans up."""
        path = tmp_path_dir / "data.dat"
        path.write_text("h\nold\n")
        line_file.rewrite_lines(path, "h", ["new-1", "new-2"])

        assert path.read_text() == "h\nnew-1\nnew-2\n"
        assert [p.name for p in tmp_path_dir.iterdir()] == ["data.dat"]
