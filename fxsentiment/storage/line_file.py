"""Low level helpers for line-oriented text files."""

import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from .codec import looks_like_header

ENCODING = "utf-8"
TAIL_BLOCK_SIZE = 4096


def read_lines(path: Path) -> list[str]:
    """
    Return all non-empty lines of ``path`` (empty list if missing).

    Undecodable bytes become U+FFFD so a damaged line fails record decoding
    instead of aborting the whole read.
    """
    if not path.exists():
        return []
    with open(path, "r", encoding=ENCODING, errors="replace") as f:
        return [line.rstrip("\r\n") for line in f if line.strip()]


def first_line(path: Path) -> Optional[str]:
    """Return the first line of ``path`` or None if missing/empty."""
    if not path.exists():
        return None
    with open(path, "r", encoding=ENCODING, errors="replace") as f:
        line = f.readline()
    return line.rstrip("\r\n") if line else None


def tail_lines(path: Path, count: int) -> list[str]:
    """
    Read the last ``count`` non-empty lines of a file without a full scan.

    Blocks are read backwards from the end of the file until enough line
    terminators have been seen.

    Args:
        path: File to read
        count: Number of lines wanted

    Returns:
        Lines in file order (oldest first), possibly fewer than ``count``
    """
    if count <= 0 or not path.exists():
        return []

    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        pos = f.tell()
        data = b""
        while pos > 0 and data.count(b"\n") <= count:
            step = min(TAIL_BLOCK_SIZE, pos)
            pos -= step
            f.seek(pos)
            data = f.read(step) + data

    lines = data.decode(ENCODING, errors="replace").splitlines()
    if pos > 0 and lines:
        # first piece may start mid-line
        lines = lines[1:]
    lines = [line for line in lines if line.strip()]
    return lines[-count:]


def append_line(path: Path, line: str) -> None:
    """Append one line with a single write so readers never see half of it."""
    with open(path, "a", encoding=ENCODING, newline="\n") as f:
        f.write(line + "\n")


def append_lines(path: Path, lines: Iterable[str]) -> None:
    payload = "".join(line + "\n" for line in lines)
    if not payload:
        return
    with open(path, "a", encoding=ENCODING, newline="\n") as f:
        f.write(payload)


def ensure_header(path: Path, header: str) -> bool:
    """
    Make sure ``path`` starts with ``header``.

    A missing or empty file gets the header written. In a file whose
    first line is a different header, that line is replaced. A file
    without any header gets one prepended. Records are always kept.

    Returns:
        True if the file was changed
    """
    current = first_line(path)
    if current == header:
        return False
    if current is None:
        append_line(path, header)
        return True
    lines = read_lines(path)
    if looks_like_header(current):
        lines = lines[1:]
    rewrite_lines(path, header, lines)
    return True


def rewrite_lines(path: Path, header: str, lines: Iterable[str]) -> None:
    """
    Atomically replace ``path`` with a header and the given lines.

    The content is written to a temporary file in the same directory and
    moved over the target with ``os.replace``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding=ENCODING, newline="\n") as f:
            f.write(header + "\n")
            for line in lines:
                f.write(line + "\n")
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
