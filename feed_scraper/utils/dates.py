import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union

from feed_scraper.errors import ContentNeverLoaded

DateLike = Union[datetime, int, float, str, None]

_RELATIVE_RE = re.compile(r"^\s*(\d+)\s*(minute|hour|day|week|month|year)s?\s*(ago)?\s*$", re.I)
_UNIT_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}


def convert_date(value: DateLike, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Turn whatever the page or the user gave us into an aware UTC datetime.

    Accepts datetimes, unix timestamps (seconds or milliseconds, as numbers or
    digit strings), ISO-8601 strings and relative expressions like "3 days".
    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value.strip())

    if isinstance(value, (int, float)):
        # anything past year ~5138 in seconds is really milliseconds
        seconds = value / 1000 if abs(value) > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    text = str(value).strip()
    m = _RELATIVE_RE.match(text)
    if m:
        amount, unit = int(m.group(1)), m.group(2).lower()
        if unit == "minute":
            delta = timedelta(minutes=amount)
        elif unit == "hour":
            delta = timedelta(hours=amount)
        else:
            delta = timedelta(days=amount * _UNIT_DAYS[unit])
        return (now or datetime.now(timezone.utc)) - delta

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive [min, max] range. A missing bound is unbounded."""
    min: Optional[datetime] = None
    max: Optional[datetime] = None

    def __post_init__(self):
        # item timestamps are always aware, naive bounds are taken as UTC
        object.__setattr__(self, "min", convert_date(self.min))
        object.__setattr__(self, "max", convert_date(self.max))
        if self.min and self.max and self.min > self.max:
            raise ValueError(f"Minimum date {self.min.isoformat()} is after maximum date {self.max.isoformat()}")

    @classmethod
    def from_strings(cls, min_date: DateLike = None, max_date: DateLike = None) -> "DateWindow":
        return cls(min=convert_date(min_date), max=convert_date(max_date))

    def is_newer(self, ts: datetime) -> bool:
        return self.max is not None and ts > self.max

    def is_older(self, ts: datetime) -> bool:
        return self.min is not None and ts < self.min

    def accepts(self, ts: Optional[datetime]) -> bool:
        if ts is None:
            return False
        return not self.is_newer(ts) and not self.is_older(ts)


class RangeCounter:
    """
    Counts what the feed hands us and classifies each timestamp against the window.

    Items are expected newest first. Once `threshold` items in a row land before
    the window's lower bound the feed has moved past it and `is_over()` flips.
    """

    def __init__(self, window: DateWindow, threshold: int = 5):
        self.window = window
        self.threshold = threshold
        self.calls = 0
        self.empty_calls = 0
        self.total_seen = 0
        self.in_range = 0
        self.over_streak = 0

    def add(self, n: int):
        self.calls += 1
        self.total_seen += n
        if n == 0:
            self.empty_calls += 1

    def time(self, ts: Optional[datetime]) -> bool:
        if ts is None:
            return False
        if self.window.is_newer(ts):
            # not there yet, doesn't count towards stopping
            return False
        if self.window.is_older(ts):
            self.over_streak += 1
            return False
        self.in_range += 1
        self.over_streak = 0
        return True

    def is_over(self) -> bool:
        return self.over_streak >= self.threshold

    @property
    def failing(self) -> bool:
        return self.calls > 0 and self.empty_calls > self.total_seen

    def check(self, namespace: str, url: Optional[str] = None, message: str = "Failed to load items"):
        """Raise ContentNeverLoaded when empty batches dominate."""
        if self.failing:
            raise ContentNeverLoaded(message, namespace=namespace, url=url, **self.stats())

    def stats(self) -> Dict[str, int]:
        return {
            "calls": self.calls,
            "empty": self.empty_calls,
            "total": self.total_seen,
            "inRange": self.in_range,
        }
