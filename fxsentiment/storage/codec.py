"""
Line codec for the semicolon-separated data files.

Every file starts with a header line followed by one record per line.
Timestamps are written as UTC ``YYYY-MM-DD HH:MM:SS`` and percentages with
two decimals. Decoding accepts a decimal comma as written by some locales.

Formats:
- observations/<KEY>.dat: ``timestamp;buyPct;sellPct;signal``
- changes/history.dat: ``instrument;fromSignal;toSignal;changeTime;fromBuyPct;toBuyPct``
- changes/snapshot.dat: ``instrument;lastSignal``
- changes/lastsent.dat: ``instrument;signal;buyPct;sentTime``
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .models import (
    LastSentSignal,
    MalformedRecord,
    Observation,
    Signal,
    TransitionEvent,
)

SEPARATOR = ";"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

OBSERVATION_HEADER = "timestamp;buyPct;sellPct;signal"
HISTORY_HEADER = "instrument;fromSignal;toSignal;changeTime;fromBuyPct;toBuyPct"
SNAPSHOT_HEADER = "instrument;lastSignal"
LASTSENT_HEADER = "instrument;signal;buyPct;sentTime"

UNKNOWN_INSTRUMENT = "UNKNOWN"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_UNDERSCORES = re.compile(r"_+")
_HEADER_FIELD = re.compile(r"[^\W\d]+(?: [^\W\d]+)*")
REPLACEMENT_CHAR = "\ufffd"
_TWO_PLACES = Decimal("0.01")


def normalize_instrument(instrument: str | None) -> str:
    """
    Turn an instrument identifier into a filesystem-safe key.

    >>> normalize_instrument("eur/usd")
    'EUR_USD'
    >>> normalize_instrument("  __xau-usd__ ")
    'XAU_USD'
    """
    if instrument is None:
        return UNKNOWN_INSTRUMENT
    key = _NON_ALNUM.sub("_", instrument)
    key = _UNDERSCORES.sub("_", key).strip("_").upper()
    return key or UNKNOWN_INSTRUMENT


def format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    try:
        return datetime.strptime(text.strip(), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise MalformedRecord(f"Bad timestamp: {text!r}") from e


def format_pct(value: Decimal) -> str:
    return str(Decimal(value).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def parse_pct(text: str) -> Decimal:
    """Parse a percentage, tolerating a decimal comma."""
    try:
        value = Decimal(text.strip().replace(",", "."))
    except (InvalidOperation, ValueError) as e:
        raise MalformedRecord(f"Bad percentage: {text!r}") from e
    if not value.is_finite():
        raise MalformedRecord(f"Bad percentage: {text!r}")
    return value


def _split(line: str, expected: int) -> list[str]:
    if REPLACEMENT_CHAR in line:
        raise MalformedRecord(f"Undecodable bytes: {line.strip()!r}")
    parts = line.rstrip("\r\n").split(SEPARATOR)
    if len(parts) != expected:
        raise MalformedRecord(
            f"Expected {expected} fields, got {len(parts)}: {line.strip()!r}"
        )
    return parts


def is_header(line: str) -> bool:
    return line.strip() in (OBSERVATION_HEADER, HISTORY_HEADER, SNAPSHOT_HEADER, LASTSENT_HEADER)


def looks_like_header(line: str) -> bool:
    """
    True for a known header or any line made only of column names.

    Observation and history records always carry a timestamp, so a line whose
    fields are all plain words cannot be data.
    """
    if is_header(line):
        return True
    fields = line.strip().split(SEPARATOR)
    return all(_HEADER_FIELD.fullmatch(f.strip()) for f in fields)


# =============================================================================
# Observations
# =============================================================================


def encode_observation(obs: Observation) -> str:
    return SEPARATOR.join([
        format_timestamp(obs.timestamp),
        format_pct(obs.buy_pct),
        format_pct(obs.sell_pct),
        obs.signal.value,
    ])


def decode_observation(instrument: str, line: str) -> Observation:
    """
    Decode an observation line of ``instrument``'s file.

    Raises:
        MalformedRecord: If the line cannot be decoded.
    """
    timestamp, buy, sell, signal = _split(line, 4)
    try:
        return Observation(
            instrument=instrument,
            timestamp=parse_timestamp(timestamp),
            buy_pct=parse_pct(buy),
            sell_pct=parse_pct(sell),
            signal=Signal.parse(signal),
        )
    except ValueError as e:
        raise MalformedRecord(str(e)) from e


# =============================================================================
# Transition history
# =============================================================================


def encode_transition(event: TransitionEvent) -> str:
    return SEPARATOR.join([
        event.instrument,
        event.from_signal.value,
        event.to_signal.value,
        format_timestamp(event.change_time),
        format_pct(event.from_buy_pct),
        format_pct(event.to_buy_pct),
    ])


def decode_transition(line: str) -> TransitionEvent:
    instrument, from_signal, to_signal, change_time, from_buy, to_buy = _split(line, 6)
    try:
        return TransitionEvent(
            instrument=instrument.strip(),
            from_signal=Signal.parse(from_signal),
            to_signal=Signal.parse(to_signal),
            change_time=parse_timestamp(change_time),
            from_buy_pct=parse_pct(from_buy),
            to_buy_pct=parse_pct(to_buy),
        )
    except ValueError as e:
        raise MalformedRecord(str(e)) from e


# =============================================================================
# Snapshot / last sent
# =============================================================================


def encode_snapshot_entry(instrument: str, signal: Signal) -> str:
    return f"{instrument}{SEPARATOR}{signal.value}"


def decode_snapshot_entry(line: str) -> tuple[str, Signal]:
    instrument, signal = _split(line, 2)
    instrument = instrument.strip()
    if not instrument:
        raise MalformedRecord(f"Missing instrument: {line.strip()!r}")
    return instrument, Signal.parse(signal)


def encode_last_sent(record: LastSentSignal) -> str:
    return SEPARATOR.join([
        record.instrument,
        record.signal.value,
        format_pct(record.buy_pct),
        format_timestamp(record.sent_time),
    ])


def decode_last_sent(line: str) -> LastSentSignal:
    instrument, signal, buy, sent_time = _split(line, 4)
    instrument = instrument.strip()
    if not instrument:
        raise MalformedRecord(f"Missing instrument: {line.strip()!r}")
    return LastSentSignal(
        instrument=instrument,
        signal=Signal.parse(signal),
        buy_pct=parse_pct(buy),
        sent_time=parse_timestamp(sent_time),
    )
