"""
Tests for alert transports and batch loading.

Tests cover:
- Alert formatting
- LoggingNotifier delivery
- WebhookNotifier payloads and error handling
- JSON lines batch loading
"""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from fxsentiment.pipeline.ingest import load_observations, observation_from_dict
from fxsentiment.pipeline.notifier import (
    LoggingNotifier,
    WebhookNotifier,
    format_alert,
)
from fxsentiment.storage.models import Observation, Signal, TransitionEvent


TS = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def observation():
    return Observation("EURUSD", TS, 62.5, 37.5, Signal.SELL)


@pytest.fixture
def event():
    return TransitionEvent("EURUSD", Signal.BUY, Signal.SELL, TS, 35.0, 62.5)


# =============================================================================
# Test Formatting
# =============================================================================


class TestFormatAlert:
    """Tests for format_alert."""

    def test_without_event(self, observation):
        """Test title for plain readings."""
        title, message = format_alert(observation, None)
        assert title == "EURUSD: SELL"
        assert "Buy 62.50% / Sell 37.50%" in message
        assert "2024-05-01 10:00:00 UTC" in message

    def test_with_event(self, observation, event):
        """Test title for transitions."""
        title, _ = format_alert(observation, event)
        assert title == "[CRITICAL] EURUSD: BUY -> SELL"


# =============================================================================
# Test Notifiers
# =============================================================================


class TestLoggingNotifier:
    """Tests for LoggingNotifier."""

    def test_always_succeeds(self, observation, event):
        """Test delivery is recorded."""
        notifier = LoggingNotifier()
        assert notifier.send(observation, event) is True
        assert notifier.sent == [(observation, event)]


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    def test_rejects_unknown_format(self):
        """Test invalid format names."""
        with pytest.raises(ValueError):
            WebhookNotifier("https://example.invalid/hook", format_type="discord")

    def test_generic_payload(self, observation, event):
        """Test generic payload contents."""
        payload = WebhookNotifier("https://example.invalid/hook").build_payload(observation, event)
        assert payload["observation"]["instrument"] == "EURUSD"
        assert payload["event"]["importance"] == "critical"

    def test_slack_payload(self, observation, event):
        """Test Slack payload contents."""
        payload = WebhookNotifier("https://example.invalid/hook", "slack").build_payload(observation, event)
        assert payload["text"].startswith("*[CRITICAL] EURUSD")
        assert payload["attachments"][0]["color"] == "#e74c3c"

    def test_send_success(self, observation):
        """Test successful POST."""
        response = MagicMock(status_code=200)
        with patch("fxsentiment.pipeline.notifier.requests.post", return_value=response) as mock_post:
            assert WebhookNotifier("https://example.invalid/hook").send(observation) is True

        mock_post.assert_called_once()
        assert mock_post.call_args.kwargs["json"]["event"] is None
        response.raise_for_status.assert_called_once()

    def test_send_http_error(self, observation):
        """Test HTTP errors report failure."""
        response = MagicMock(status_code=500)
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with patch("fxsentiment.pipeline.notifier.requests.post", return_value=response):
            assert WebhookNotifier("https://example.invalid/hook").send(observation) is False

    def test_send_connection_error(self, observation):
        """Test transport errors report failure."""
        with patch(
            "fxsentiment.pipeline.notifier.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            assert WebhookNotifier("https://example.invalid/hook").send(observation) is False


# =============================================================================
# Test Ingest
# =============================================================================


class TestIngest:
    """Tests for JSON lines loading."""

    def test_observation_from_dict_defaults(self):
        """Test sell share and signal are derived."""
        obs = observation_from_dict({"instrument": "EURUSD", "buy_pct": 30, "timestamp": "2024-05-01T10:00:00Z"})
        assert obs.sell_pct == 70
        assert obs.signal == Signal.BUY
        assert obs.timestamp == TS

    def test_observation_from_dict_explicit_signal(self):
        """Test an explicit signal wins over the derived one."""
        obs = observation_from_dict({"instrument": "EURUSD", "buy_pct": 30, "sell_pct": 70, "signal": "neutral"})
        assert obs.signal == Signal.NEUTRAL

    @pytest.mark.parametrize("data", [[1], "x", 42, None])
    def test_observation_from_dict_rejects_non_objects(self, data):
        """Test JSON values other than objects raise TypeError."""
        with pytest.raises(TypeError):
            observation_from_dict(data)

    def test_load_observations_skips_bad_lines(self):
        """Test bad lines are skipped."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "batch.jsonl"
            path.write_text(
                json.dumps({"instrument": "EURUSD", "buy_pct": 62.5, "sell_pct": 37.5}) + "\n"
                + "{not json}\n"
                + json.dumps({"instrument": "GBPUSD"}) + "\n"
                + json.dumps({"instrument": "USDJPY", "buy_pct": -4}) + "\n"
                + "\n"
                + json.dumps({"instrument": "AUDUSD", "buy_pct": "abc"}) + "\n"
                + "[1]\n"
                + "\"x\"\n"
                + "42\n"
            )
            observations = load_observations(path)

        assert [o.instrument for o in observations] == ["EURUSD"]
