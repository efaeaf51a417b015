"""
Small helpers shared across modules: clock, money rounding and references.
"""
from datetime import datetime, timezone, date, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple
import random


TWO_PLACES = Decimal("0.01")


def utc_now() -> datetime:
    """Naive UTC timestamp. All DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Round to 2 places, half up."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def date_range_bounds(start_date: Optional[date], end_date: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive date range converted to [start, end) datetimes."""
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.min) + timedelta(days=1) if end_date else None
    return start, end


def epoch_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def timestamp_reference(prefix: str, digits: int = 3, rng: Optional[random.Random] = None) -> str:
    """PREFIX-<epoch ms>-<random digits>"""
    rng = rng or random
    millis = epoch_millis()
    suffix = str(rng.randint(0, 10 ** digits - 1)).zfill(digits)
    return f"{prefix}-{millis}-{suffix}"
