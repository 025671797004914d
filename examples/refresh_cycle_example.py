"""
Example usage of the sentiment refresh cycle.

This script demonstrates how to:
1. Build a RefreshCycle over a temporary data directory
2. Feed consecutive observation batches
3. See transitions detected and classified
4. See the notification gate suppress small moves
5. Restart the pipeline and keep the signal watermark
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fxsentiment.pipeline import LoggingNotifier, RefreshCycle
from fxsentiment.storage import Observation


def main():
    """Run refresh cycle example."""
    print("=" * 70)
    print("Refresh Cycle Example")
    print("=" * 70)
    print()

    start = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    with tempfile.TemporaryDirectory() as tmpdir:
        data_dir = Path(tmpdir)
        notifier = LoggingNotifier()
        cycle = RefreshCycle.from_directory(data_dir, notifier=notifier, threshold_pct=3.0)

        # Example 1: first readings are stored and always notified
        print("Example 1: First batch")
        print("-" * 70)
        result = cycle.run([
            Observation.from_sentiment("EURUSD", 35.0, 65.0, start),
            Observation.from_sentiment("XAUUSD", 50.0, 50.0, start),
        ])
        print(f"Stored: {result.stored}, transitions: {result.transitions}, sent: {result.notifications_sent}")
        print()

        # Example 2: EURUSD flips from BUY to SELL
        print("Example 2: Reversal")
        print("-" * 70)
        result = cycle.run([
            Observation.from_sentiment("EURUSD", 63.0, 37.0, start + timedelta(hours=1)),
            Observation.from_sentiment("XAUUSD", 51.0, 49.0, start + timedelta(hours=1)),
        ])
        for event in result.events:
            print(f"  {event.describe()}")
        print(f"Sent: {result.notifications_sent}, suppressed: {result.notifications_suppressed}")
        print()

        # Example 3: restart keeps the watermark
        print("Example 3: Restart")
        print("-" * 70)
        cycle.shutdown()
        cycle = RefreshCycle.from_directory(data_dir, notifier=notifier, threshold_pct=3.0)
        result = cycle.run([
            Observation.from_sentiment("EURUSD", 64.0, 36.0, start + timedelta(hours=2)),
        ])
        print(f"Transitions after restart: {result.transitions}")
        print(f"Last known EURUSD signal: {cycle.detector.last_known_signal('EURUSD')}")
        print()

        print("History for EURUSD:")
        for event in cycle.detector.history_for("EURUSD"):
            print(f"  {event.change_time:%Y-%m-%d %H:%M} {event.from_signal} -> {event.to_signal}")
        print()

        cycle.shutdown()

    print("=" * 70)
    print("Example complete!")
    print("=" * 70)


if __name__ == "__main__":
    main()
