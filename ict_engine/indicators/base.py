"""
Base Indicator Class

Abstract base for the per-bar indicators the engine reads (ATR, EMA).
Indicators compute over an OHLCV DataFrame; ``series`` adapts them to
candle lists.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Sequence
import logging
import math

import pandas as pd

from ..models import Candle

logger = logging.getLogger(__name__)

FRAME_COLUMNS = ['time', 'open', 'high', 'low', 'close', 'volume']


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Build an OHLCV DataFrame from candles."""
    return pd.DataFrame(
        [(c.t, c.o, c.h, c.l, c.c, c.v) for c in candles],
        columns=FRAME_COLUMNS,
    )


class Indicator(ABC):
    """
    Subclasses implement calculate(), returning a frame with ``time`` and
    ``value`` columns aligned row for row with the input.
    """

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self.params = params or {}
        self.name = self.__class__.__name__

    @abstractmethod
    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Args:
            df: OHLCV frame (columns: time, open, high, low, close, volume)

        Returns:
            DataFrame with 'time' and 'value' columns, NaN where undefined
        """
        pass

    def validate_dataframe(self, df: pd.DataFrame) -> bool:
        """
        Raises:
            ValueError: missing columns or no rows
        """
        missing = [col for col in FRAME_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(f"DataFrame missing required columns: {missing}")
        if df.empty:
            raise ValueError("DataFrame is empty")
        return True

    def calculate_safe(self, df: pd.DataFrame) -> Optional[pd.DataFrame]:
        """calculate() that logs and returns None on failure."""
        try:
            self.validate_dataframe(df)
            return self.calculate(df)
        except Exception as e:
            logger.error(f"Error calculating {self.name}: {e}")
            return None

    def series(self, candles: Sequence[Candle]) -> List[Optional[float]]:
        """
        Per-bar values for a candle list, None where the indicator is
        undefined. Always the same length as ``candles``.
        """
        if not candles:
            return []
        result = self.calculate_safe(candles_to_frame(candles))
        if result is None:
            return [None] * len(candles)
        return [None if v is None or math.isnan(v) else float(v) for v in result['value'].tolist()]


def validate_period(period: int, min_period: int = 2) -> int:
    if not isinstance(period, int):
        raise ValueError(f"Period must be integer, got {type(period)}")
    if period < min_period:
        raise ValueError(f"Period must be >= {min_period}, got {period}")
    return period
