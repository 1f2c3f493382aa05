"""
Moving Average Indicators
"""

import numpy as np
import pandas as pd

from .base import Indicator, validate_period


class EMA(Indicator):
    """
    Exponential Moving Average, seeded with the simple mean.

    The first defined value sits at index ``period - 1`` and equals the
    mean of the first ``period`` values; smoothing with
    ``k = 2 / (period + 1)`` continues from there. Earlier rows are NaN.
    """

    def __init__(self, period: int = 20, source: str = 'close'):
        super().__init__({
            'period': validate_period(period),
            'source': source,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        period = self.params['period']
        source = self.params['source']

        if source not in df.columns:
            raise ValueError(f"Source column '{source}' not found in DataFrame")

        values = df[source].astype(float)
        ema = pd.Series(np.nan, index=values.index)

        if len(values) >= period:
            seeded = values.iloc[period - 1:].copy()
            seeded.iloc[0] = values.iloc[:period].mean()
            ema.iloc[period - 1:] = seeded.ewm(span=period, adjust=False).mean().values

        return pd.DataFrame({
            'time': df['time'],
            'value': ema
        })
