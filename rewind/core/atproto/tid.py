"""Timestamp identifiers (TIDs) used as record keys and listing cursors."""

from __future__ import annotations

import re
from datetime import datetime, timezone

S32_CHARS = "234567abcdefghijklmnopqrstuvwxyz"
TID_RE = re.compile(r"^[234567abcdefghij][234567abcdefghijklmnopqrstuvwxyz]{12}$")

# 53 bits of microseconds, 10 bits of clock id
MAX_TIMESTAMP_US = (1 << 53) - 1
MAX_CLOCK_ID = (1 << 10) - 1


def _s32encode(value: int, width: int) -> str:
    chars = []
    while value > 0:
        chars.append(S32_CHARS[value & 31])
        value >>= 5
    return "".join(reversed(chars)).rjust(width, S32_CHARS[0])


def _s32decode(text: str) -> int:
    value = 0
    for char in text:
        value = (value << 5) | S32_CHARS.index(char)
    return value


def create_tid(timestamp_us: int, clock_id: int = 0) -> str:
    """Build a TID from microseconds since the epoch and a clock id."""
    if not 0 <= timestamp_us <= MAX_TIMESTAMP_US:
        raise ValueError("timestamp out of range")
    if not 0 <= clock_id <= MAX_CLOCK_ID:
        raise ValueError("clock id out of range")
    return _s32encode(timestamp_us, 11) + _s32encode(clock_id, 2)


def tid_for_datetime(moment: datetime, clock_id: int = 0) -> str:
    """TID for ``moment``; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    delta = moment - epoch
    micros = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    return create_tid(micros, clock_id)


def parse_tid(tid: str) -> tuple[int, int]:
    """Return ``(timestamp_us, clock_id)`` for a TID string."""
    if not TID_RE.match(tid):
        raise ValueError(f"invalid TID: {tid!r}")
    return _s32decode(tid[:11]), _s32decode(tid[11:])
