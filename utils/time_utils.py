"""
Time helpers for the crawl pipeline.

All pipeline timestamps (message enqueue time, source bookkeeping, dead-letter
records) are UTC epoch milliseconds.
"""
import time
from datetime import datetime
from typing import Optional

import pytz
from loguru import logger


def now_ms() -> int:
    """Current UTC time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Naive datetimes are treated as UTC (feedparser's *_parsed tuples are UTC).
    """
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=pytz.utc)


def parse_pub_date(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 publish date into epoch milliseconds.

    Returns None when the value is empty or unparseable.
    """
    if not value:
        return None
    try:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_epoch_ms(datetime.fromisoformat(text))
    except ValueError:
        logger.warning(f"Could not parse publish date: {value}")
        return None


def iso_from_ms(value: int) -> str:
    """Epoch milliseconds as an ISO-8601 UTC string."""
    return from_epoch_ms(value).isoformat().replace("+00:00", "Z")
