"""
Clock sources.

Snapshot timestamps come from an injected clock so tests can pin them.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

# fromisoformat before 3.11 takes only 3 or 6 fractional digits
_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _six_digits(match) -> str:
    return f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}"


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z", plain dates ("2024-01-31") and any number of
    fractional-second digits (truncated to microseconds).
    """
    text = _FRACTION.sub(_six_digits, value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


class SystemClock:
    """Wall clock (UTC)."""

    def now(self) -> datetime:
        return utc_now()


@dataclass
class FixedClock:
    """
    Manually driven clock.

    In tests: set or advance explicitly so snapshot dates are reproducible.
    """
    current: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.current is None:
            self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.current = ensure_utc(self.current)

    def now(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = ensure_utc(value)

    def tick(self, step: timedelta = timedelta(seconds=1)) -> datetime:
        """Advance clock by step and return the new time."""
        self.current = self.current + step
        return self.current
