"""Millisecond clock helpers shared by the sync and feed layers."""
import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_ms(value: datetime) -> int:
    """Naive datetimes are treated as UTC (the convention for every model)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_ms(value: int) -> datetime:
    """Epoch milliseconds -> naive UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def parse_timestamp(value) -> datetime:
    """Accept ISO-8601 strings, epoch-ms integers or datetimes from the wire."""
    if isinstance(value, (int, float)):
        return from_ms(int(value))
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def utcnow() -> datetime:
    """Naive UTC now; every model column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
