"""
Notification transports for approved signal alerts.

A notifier receives the observation the gate approved and, when the alert
was caused by a signal change, the matching transition event. It reports
delivery with a boolean; only a True result lets the caller record the
alert as sent.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from ..storage.models import Importance, Observation, TransitionEvent

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10  # seconds

SLACK_COLORS = {
    Importance.LOW: "#3498db",
    Importance.MEDIUM: "#2ecc71",
    Importance.HIGH: "#f1c40f",
    Importance.CRITICAL: "#e74c3c",
}


def format_alert(observation: Observation, event: Optional[TransitionEvent]) -> tuple[str, str]:
    """Build (title, message) for an alert."""
    title = f"{observation.instrument}: {observation.signal}"
    if event is not None:
        title = f"[{event.importance.name}] {event.instrument}: {event.from_signal} -> {event.to_signal}"
    message = (
        f"Buy {observation.buy_pct:.2f}% / Sell {observation.sell_pct:.2f}% "
        f"at {observation.timestamp:%Y-%m-%d %H:%M:%S} UTC"
    )
    return title, message


class Notifier(ABC):
    """Abstract alert transport."""

    @abstractmethod
    def send(self, observation: Observation, event: Optional[TransitionEvent] = None) -> bool:
        """
        Deliver an alert.

        Args:
            observation: Approved reading
            event: Transition that accompanies the reading, if any

        Returns:
            True if delivery succeeded
        """
        pass


class LoggingNotifier(Notifier):
    """Writes alerts to the log. Always succeeds."""

    def __init__(self):
        self.sent: list[tuple[Observation, Optional[TransitionEvent]]] = []

    def send(self, observation: Observation, event: Optional[TransitionEvent] = None) -> bool:
        title, message = format_alert(observation, event)
        logger.info(f"ALERT {title} - {message}")
        self.sent.append((observation, event))
        return True


class WebhookNotifier(Notifier):
    """
    Posts alerts as JSON to a webhook.

    Supported formats:
        generic: Observation and event dictionaries
        slack: Slack incoming-webhook message with a colored attachment
    """

    def __init__(self, url: str, format_type: str = "generic", timeout: float = WEBHOOK_TIMEOUT):
        if format_type not in ("generic", "slack"):
            raise ValueError(f"Unsupported webhook format: {format_type}")
        self.url = url
        self.format_type = format_type
        self.timeout = timeout

    def build_payload(
        self, observation: Observation, event: Optional[TransitionEvent] = None
    ) -> dict[str, Any]:
        title, message = format_alert(observation, event)

        if self.format_type == "slack":
            importance = event.importance if event else Importance.LOW
            return {
                "text": f"*{title}*\n{message}",
                "attachments": [{
                    "color": SLACK_COLORS[importance],
                    "text": message,
                    "footer": "FX Sentiment Alert",
                }],
            }

        return {
            "title": title,
            "message": message,
            "observation": observation.to_dict(),
            "event": event.to_dict() if event else None,
        }

    def send(self, observation: Observation, event: Optional[TransitionEvent] = None) -> bool:
        payload = self.build_payload(observation, event)
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Webhook delivery failed for {observation.instrument}: {e}")
            return False

        logger.debug(f"Webhook delivered for {observation.instrument} ({response.status_code})")
        return True
