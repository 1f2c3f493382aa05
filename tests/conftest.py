"""
Shared fixtures: synthetic OHLCV candles.
"""

import pytest

from factories import MINUTE, random_walk_candles


@pytest.fixture
def sample_candles():
    """Three days of 5-minute bars"""
    return random_walk_candles(3 * 288)


@pytest.fixture
def minute_candles():
    """Two days of 1-minute bars"""
    return random_walk_candles(2 * 1440, interval_ms=MINUTE, seed=7, vol=0.05)
