"""
Synthetic candle builders shared by the test modules.
"""

import numpy as np

from ict_engine.models import Candle

# 2024-03-04 00:00 UTC, a Monday
MONDAY_MS = 1709510400000
MINUTE = 60 * 1000
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def make_candle(t, o, h, l, c, v=0.0):
    return Candle(int(t), float(o), float(h), float(l), float(c), float(v))


def random_walk_candles(n, start=MONDAY_MS, interval_ms=5 * MINUTE, seed=42, price=100.0, vol=0.15):
    """Random-walk OHLCV bars with realistic wicks."""
    rng = np.random.RandomState(seed)
    closes = price + np.cumsum(rng.randn(n) * vol)
    opens = np.concatenate([[price], closes[:-1]])
    wick_up = np.abs(rng.randn(n)) * vol * 0.6
    wick_dn = np.abs(rng.randn(n)) * vol * 0.6
    highs = np.maximum(opens, closes) + wick_up
    lows = np.minimum(opens, closes) - wick_dn
    volume = rng.randint(100, 1000, n)
    return [
        make_candle(start + i * interval_ms, opens[i], highs[i], lows[i], closes[i], volume[i])
        for i in range(n)
    ]
