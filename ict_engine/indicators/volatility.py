"""
Volatility Indicators

Average True Range with Wilder smoothing.
"""

import numpy as np
import pandas as pd

from .base import Indicator, validate_period


def true_range(df: pd.DataFrame) -> pd.Series:
    """True range per bar; the first bar has no previous close and is NaN."""
    prev_close = df['close'].shift(1)
    ranges = pd.concat([
        df['high'] - df['low'],
        (df['high'] - prev_close).abs(),
        (df['low'] - prev_close).abs(),
    ], axis=1)
    tr = ranges.max(axis=1)
    tr.iloc[0] = np.nan
    return tr


class ATR(Indicator):
    """
    Average True Range

    atr[0] is 0, atr[1] is the first true range, then
    atr[i] = (atr[i-1] * (period - 1) + tr[i]) / period.
    """

    def __init__(self, period: int = 14):
        super().__init__({'period': validate_period(period)})

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        """Calculate ATR"""
        period = self.params['period']
        atr = pd.Series(0.0, index=df.index)

        if len(df) > 1:
            tr = true_range(df).iloc[1:]
            atr.iloc[1:] = tr.ewm(alpha=1.0 / period, adjust=False).mean().values

        return pd.DataFrame({
            'time': df['time'],
            'value': atr
        })
