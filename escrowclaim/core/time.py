"""
escrowclaim/core/time.py

Every timestamp in escrowclaim comes from a Clock.

A Clock is any zero-argument callable returning an aware UTC datetime.
Production code uses utc_now(). Tests pin time with FrozenClock so that
expiry boundaries can be hit exactly.

Wire format: YYYY-MM-DDTHH:MM:SS.mmmZ
             (milliseconds, explicit Z, no +00:00, no microseconds)
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

_WIRE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def utc_now() -> datetime:
    """Current aware UTC datetime, truncated to wire (millisecond) precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def epoch_seconds(dt: datetime) -> int:
    """Whole seconds since the epoch, truncating any fraction."""
    return int(dt.timestamp())


def from_epoch_seconds(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def wire_timestamp(dt: datetime) -> str:
    """
    Render an aware datetime in wire format.
    Format: YYYY-MM-DDTHH:MM:SS.mmmZ  (exactly 3 fractional digits, Z suffix)
    """
    dt = dt.astimezone(timezone.utc)
    ms = dt.microsecond // 1000
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms:03d}Z"


def parse_wire_timestamp(value: str) -> datetime:
    """Inverse of wire_timestamp(). Raises ValueError on any other format."""
    if not isinstance(value, str) or not _WIRE_RE.match(value):
        raise ValueError(f"not a wire timestamp: {value!r}")
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(
        tzinfo=timezone.utc
    )


class FrozenClock:
    """
    A Clock that only moves when told to.

        clock = FrozenClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock()            -> 2026-01-01T00:00:00Z
        clock.advance(60)  -> 2026-01-01T00:01:00Z
    """

    def __init__(self, start: datetime = None):
        if start is None:
            start = utc_now()
        if start.tzinfo is None:
            raise ValueError("FrozenClock requires an aware datetime")
        # Credentials carry whole seconds.
        self._now = start.replace(microsecond=0)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def __repr__(self) -> str:
        return f"FrozenClock({wire_timestamp(self._now)})"
