"""
Time helpers for epoch-millisecond candles.

All grouping is done in UTC; New York local time is only needed for the
Model 2022 kill-zone annotation.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytz

from .models import Candle

EASTERN = pytz.timezone('America/New_York')

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def to_utc(t: int) -> datetime:
    return datetime.fromtimestamp(t / 1000, tz=pytz.UTC)


def utc_hour(t: int) -> int:
    return to_utc(t).hour


def day_key(t: int) -> str:
    """UTC calendar date, e.g. ``2024-03-01``."""
    return to_utc(t).strftime('%Y-%m-%d')


def iso_week_key(t: int) -> str:
    """ISO year and week, zero padded so keys sort chronologically."""
    year, week, _ = to_utc(t).isocalendar()
    return f"{year}-W{week:02d}"


def hour_in_tz(t: int, tz=EASTERN) -> int:
    return to_utc(t).astimezone(tz).hour


def group_by_day(candles: Sequence[Candle]) -> Dict[str, List[Candle]]:
    """Group candles by UTC day, keys in ascending order."""
    return _group(candles, day_key)


def group_by_week(candles: Sequence[Candle]) -> Dict[str, List[Candle]]:
    return _group(candles, iso_week_key)


def _group(candles, key_fn) -> Dict[str, List[Candle]]:
    grouped: Dict[str, List[Candle]] = {}
    for candle in candles:
        grouped.setdefault(key_fn(candle.t), []).append(candle)
    return OrderedDict(sorted(grouped.items()))


def infer_timeframe_ms(candles: Sequence[Candle], max_samples: int = 80) -> Optional[float]:
    """Average positive spacing over the most recent ``max_samples`` deltas."""
    if len(candles) < 2:
        return None
    diffs = []
    for i in range(len(candles) - 1, 0, -1):
        if len(diffs) >= max_samples:
            break
        delta = candles[i].t - candles[i - 1].t
        if delta > 0:
            diffs.append(delta)
    if not diffs:
        return None
    return sum(diffs) / len(diffs)
