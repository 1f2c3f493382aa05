"""
Indicators read by the signal engine
"""
from .base import Indicator, candles_to_frame, validate_period
from .moving_averages import EMA
from .volatility import ATR, true_range

__all__ = [
    'Indicator',
    'candles_to_frame',
    'validate_period',
    'EMA',
    'ATR',
    'true_range',
]
