#!/usr/bin/env python3
"""
Run FX Sentiment Refresh Cycle

Command-line interface to the sentiment pipeline: ingest a batch of
observations, inspect stored data and signal history, validate files and
apply retention.

Usage:
    # Run one cycle over a JSON lines batch
    python scripts/run_sentiment_cycle.py --ingest batch.jsonl

    # Same, posting alerts to a webhook with a custom threshold
    python scripts/run_sentiment_cycle.py --ingest batch.jsonl --webhook https://hooks.slack.com/... --threshold 5

    # Show store, detector and gate status
    python scripts/run_sentiment_cycle.py --status

    # Show signal change history of one instrument
    python scripts/run_sentiment_cycle.py --history EURUSD

    # Validate all observation files
    python scripts/run_sentiment_cycle.py --validate

    # Remove data older than 30 days
    python scripts/run_sentiment_cycle.py --prune-days 30

    # Export one instrument's file
    python scripts/run_sentiment_cycle.py --export EURUSD --output exports/eurusd.dat

Batch Format (one JSON object per line):
    {"instrument": "EURUSD", "buy_pct": 62.5, "sell_pct": 37.5, "timestamp": "2024-05-01T10:00:00Z"}

Environment Variables:
    SENTIMENT_DATA_DIR - Data root (default: ./data)
    SIGNAL_THRESHOLD_PCT - Gate threshold in percentage points (default: 3.0)
    TERMINAL_SYNC_DIRS - Terminal directories for the signal snapshot
    WEBHOOK_URL / WEBHOOK_FORMAT - Webhook notifier settings
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fxsentiment.config import (
    DATA_DIR,
    LOGS_DIR,
    RETENTION_DAYS,
    SIGNAL_THRESHOLD_PCT,
    TERMINAL_SYNC_DIRS,
    WEBHOOK_FORMAT,
    WEBHOOK_URL,
)
from fxsentiment.pipeline import (
    LoggingNotifier,
    RefreshCycle,
    WebhookNotifier,
    load_observations,
)
from fxsentiment.storage import ConfigurationError, SentimentStoreError


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the pipeline."""
    level = logging.DEBUG if verbose else logging.INFO

    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"sentiment_cycle_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def build_cycle(data_dir: Path, threshold: float, webhook: str) -> RefreshCycle:
    notifier = WebhookNotifier(webhook, WEBHOOK_FORMAT) if webhook else LoggingNotifier()
    return RefreshCycle.from_directory(
        data_dir,
        notifier=notifier,
        threshold_pct=threshold,
        mirror_dirs=TERMINAL_SYNC_DIRS,
    )


def run_ingest(cycle: RefreshCycle, batch_file: Path) -> None:
    observations = load_observations(batch_file)

    print("\n" + "=" * 70)
    print(f"Refresh Cycle: {batch_file}")
    print("=" * 70)

    result = cycle.run(observations)

    print(f"\nObservations: {result.observations}")
    print(f"  Stored: {result.stored}")
    print(f"  Duplicates: {result.duplicates}")
    print(f"  Store failures: {result.store_failures}")
    print(f"\nSignal changes: {result.transitions}")
    for event in result.events:
        print(f"  - {event.describe()}")
    print("\nNotifications:")
    print(f"  Sent: {result.notifications_sent}")
    print(f"  Suppressed: {result.notifications_suppressed}")
    print(f"  Failed: {result.notifications_failed}")
    if cycle.mirror_dirs:
        print(f"\nTerminal directories updated: {result.terminals_updated}/{len(cycle.mirror_dirs)}")

    print("\n" + "=" * 70)


def show_status(cycle: RefreshCycle) -> None:
    status = cycle.get_status()

    print("\n" + "=" * 70)
    print("FX Sentiment Pipeline Status")
    print("=" * 70)

    store = status["store"]
    print(f"\nObservation Store: {store['directory']}")
    print(f"  Instruments: {store['instrument_count']}")
    print(f"  Total records: {store['total_records']}")
    for instrument, count in store["records_per_instrument"].items():
        print(f"    - {instrument}: {count}")

    detector = status["detector"]
    print("\nSignal Changes:")
    print(f"  Total: {detector['total_changes']}")
    print(f"  Last 24h: {detector['changes_last_24h']}")
    print(f"  Tracked instruments: {detector['tracked_instruments']}")
    for importance, count in detector["by_importance"].items():
        print(f"    {importance}: {count}")

    gate = status["gate"]
    print("\nNotification Gate:")
    print(f"  Threshold: {status['threshold_pct']}%")
    print(f"  Instruments alerted: {gate['tracked_instruments']}")
    print(f"  Newest alert: {gate['newest_sent'] or 'None'}")

    print("\n" + "=" * 70)


def show_history(cycle: RefreshCycle, instrument: str) -> None:
    events = cycle.detector.history_for(instrument)

    print("\n" + "=" * 70)
    print(f"Signal History: {instrument}")
    print("=" * 70)

    if not events:
        print("\nNo signal changes recorded")
    for event in events:
        print(
            f"  {event.change_time:%Y-%m-%d %H:%M:%S}  "
            f"{event.from_signal!s:>7} -> {event.to_signal!s:<7}  "
            f"{event.importance.name:<8}  {event.actuality().value}"
        )

    last_sent = cycle.gate.last_sent(instrument)
    if last_sent:
        print(f"\nLast alert: {last_sent.signal} at {last_sent.buy_pct}% ({last_sent.sent_time:%Y-%m-%d %H:%M:%S})")

    print("\n" + "=" * 70)


def run_validate(cycle: RefreshCycle) -> bool:
    results = cycle.store.validate()

    print("\n" + "=" * 70)
    print("Observation File Validation")
    print("=" * 70 + "\n")

    all_valid = True
    for instrument, result in results.items():
        state = "OK" if result.is_valid else "ISSUES"
        print(
            f"  {instrument:<12} {state:<7} records={result.record_count} "
            f"invalid={result.invalid_count} malformed={result.malformed_count}"
        )
        all_valid = all_valid and result.is_valid

    print("\n" + "=" * 70)
    return all_valid


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the FX sentiment refresh cycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_sentiment_cycle.py --ingest batch.jsonl    # Run one cycle
  python scripts/run_sentiment_cycle.py --status                # Show status
  python scripts/run_sentiment_cycle.py --history EURUSD        # Signal history
  python scripts/run_sentiment_cycle.py --validate              # Validate files
  python scripts/run_sentiment_cycle.py --prune-days 30         # Apply retention
        """,
    )

    mode_group = parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument("--ingest", type=Path, metavar="FILE", help="Run a cycle over a JSON lines batch")
    mode_group.add_argument("--status", action="store_true", help="Show pipeline status and exit")
    mode_group.add_argument("--history", metavar="INSTRUMENT", help="Show signal change history")
    mode_group.add_argument("--validate", action="store_true", help="Validate observation files")
    mode_group.add_argument(
        "--prune-days",
        type=int,
        nargs="?",
        const=RETENTION_DAYS,
        metavar="DAYS",
        help=f"Remove data older than DAYS (default: {RETENTION_DAYS})",
    )
    mode_group.add_argument("--export", metavar="INSTRUMENT", help="Export one instrument's file")

    parser.add_argument("--output", type=Path, metavar="PATH", help="Target path for --export")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR, help=f"Data root (default: {DATA_DIR})")
    parser.add_argument(
        "--threshold",
        type=float,
        default=SIGNAL_THRESHOLD_PCT,
        metavar="PCT",
        help=f"Notification threshold in percentage points (default: {SIGNAL_THRESHOLD_PCT})",
    )
    parser.add_argument("--webhook", default=WEBHOOK_URL, metavar="URL", help="Post alerts to this webhook")
    parser.add_argument("--json", action="store_true", help="Print --status as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    if args.export and not args.output:
        parser.error("--export requires --output")

    setup_logging(verbose=args.verbose)

    try:
        cycle = build_cycle(args.data_dir, args.threshold, args.webhook)

        if args.ingest:
            run_ingest(cycle, args.ingest)
        elif args.status:
            if args.json:
                print(json.dumps(cycle.get_status(), indent=2))
            else:
                show_status(cycle)
        elif args.history:
            show_history(cycle, args.history)
        elif args.validate:
            if not run_validate(cycle):
                sys.exit(2)
        elif args.prune_days is not None:
            removed = cycle.cleanup(args.prune_days)
            print(json.dumps(removed, indent=2))
        elif args.export:
            target = cycle.store.export(args.export, args.output)
            print(f"Exported {args.export} to {target}")

        cycle.shutdown()

    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        sys.exit(1)
    except (SentimentStoreError, OSError) as e:
        print(f"\nFatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
