"""
Market Structure Analyzer
=========================

Pure functions over candle history:

- Daily bias (with a moving-average fallback) and weekly bias
- Swing pivots over a symmetric lookback window
- Structure shifts (BOS / CHoCH) from breaks of tracked swing levels

None of these raise on short or empty input; they return a neutral or
empty result instead.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .models import (
    Bias, BiasLabel, Candle, Polarity, ShiftLabel, StructureShift,
    StructureShiftOptions, Swing, SwingType,
)
from .timeutils import group_by_day, group_by_week

logger = logging.getLogger(__name__)

MIN_BIAS_CANDLES = 5
MIN_WEEKLY_BIAS_CANDLES = 10
TREND_SHORT_WINDOW = 40
TREND_LONG_WINDOW = 160
TREND_BAND = 0.0005
MAX_SHIFTS = 30


# ═══════════════════════════════════════════════════════════════════════════
# BIAS
# ═══════════════════════════════════════════════════════════════════════════

def compute_bias(candles: Sequence[Candle]) -> Bias:
    """
    Daily bias from the latest (possibly partial) UTC day against the prior day.

    Bullish when the day closes above its open and the prior close and has
    taken the prior high; Bearish on the mirror. Otherwise falls back to a
    40 vs 160 bar average comparison before settling on Neutral.
    """
    if len(candles) < MIN_BIAS_CANDLES:
        return Bias(BiasLabel.NEUTRAL, 'Not enough data to compute bias')

    days = list(group_by_day(candles).values())
    if len(days) < 2:
        return Bias(BiasLabel.NEUTRAL, 'Waiting for at least two sessions')

    prev_day, current_day = days[-2], days[-1]
    prev_high = max(c.h for c in prev_day)
    prev_low = min(c.l for c in prev_day)
    prev_close = prev_day[-1].c

    current_open = current_day[0].o
    current_close = current_day[-1].c
    took_high = max(c.h for c in current_day) >= prev_high
    took_low = min(c.l for c in current_day) <= prev_low
    above_open = current_close > current_open
    above_prev_close = current_close > prev_close

    if above_open and above_prev_close and took_high:
        return Bias(BiasLabel.BULLISH, 'Above daily open/prev close and swept prior high')
    if not above_open and not above_prev_close and took_low:
        return Bias(BiasLabel.BEARISH, 'Below daily open/prev close and swept prior low')

    fallback = compute_trend_bias(candles)
    if fallback is not None:
        return fallback
    return Bias(BiasLabel.NEUTRAL, 'Inside previous range or mixed signals')


def compute_trend_bias(candles: Sequence[Candle]) -> Optional[Bias]:
    """Short/long close average comparison with a 0.05% band."""
    if len(candles) < TREND_SHORT_WINDOW:
        return None
    closes = np.array([c.c for c in candles], dtype=float)
    short_avg = closes[-TREND_SHORT_WINDOW:].mean()
    long_avg = closes[-TREND_LONG_WINDOW:].mean()
    if not np.isfinite(short_avg) or not np.isfinite(long_avg):
        return None
    if short_avg > long_avg * (1 + TREND_BAND):
        return Bias(BiasLabel.BULLISH, 'Fallback trend bias (short avg above long avg)')
    if short_avg < long_avg * (1 - TREND_BAND):
        return Bias(BiasLabel.BEARISH, 'Fallback trend bias (short avg below long avg)')
    return None


def compute_weekly_bias(candles: Sequence[Candle]) -> Bias:
    if len(candles) < MIN_WEEKLY_BIAS_CANDLES:
        return Bias(BiasLabel.NEUTRAL, 'Not enough data to compute weekly bias')

    weeks = list(group_by_week(candles).values())
    if len(weeks) < 2:
        return Bias(BiasLabel.NEUTRAL, 'Waiting for at least two weeks')

    prev_week, current_week = weeks[-2], weeks[-1]
    took_high = max(c.h for c in current_week) >= max(c.h for c in prev_week)
    took_low = min(c.l for c in current_week) <= min(c.l for c in prev_week)
    above_open = current_week[-1].c > current_week[0].o

    if above_open and took_high:
        return Bias(BiasLabel.BULLISH, 'Weekly close above open and swept prior weekly high')
    if not above_open and took_low:
        return Bias(BiasLabel.BEARISH, 'Weekly close below open and swept prior weekly low')
    return Bias(BiasLabel.NEUTRAL, 'Weekly range inside prior week or mixed')


# ═══════════════════════════════════════════════════════════════════════════
# SWINGS
# ═══════════════════════════════════════════════════════════════════════════

def detect_swings(candles: Sequence[Candle], lookback: int = 2) -> List[Swing]:
    """
    Pivot highs/lows: bar ``i`` is a swing high when its high equals the max
    of the ``[i - lookback, i + lookback]`` window (lows likewise). Both can
    fire on the same bar. The first and last ``lookback`` bars never qualify.
    """
    swings: List[Swing] = []
    n = len(candles)
    if lookback < 0 or n < 2 * lookback + 1:
        return swings

    highs = np.array([c.h for c in candles], dtype=float)
    lows = np.array([c.l for c in candles], dtype=float)

    for i in range(lookback, n - lookback):
        window = slice(i - lookback, i + lookback + 1)
        center = candles[i]
        if center.h == highs[window].max():
            swings.append(Swing(i, center.t, center.h, SwingType.HIGH))
        if center.l == lows[window].min():
            swings.append(Swing(i, center.t, center.l, SwingType.LOW))
    return swings


def find_recent_swing(swings: Optional[Sequence[Swing]], kind: SwingType,
                      before_time: int) -> Optional[float]:
    """Price of the latest swing of ``kind`` at or before ``before_time``."""
    if not swings:
        return None
    price = None
    for swing in swings:
        if swing.type is kind and swing.time <= before_time:
            price = swing.price
    return price


# ═══════════════════════════════════════════════════════════════════════════
# STRUCTURE SHIFTS
# ═══════════════════════════════════════════════════════════════════════════

def _has_displacement(candle: Candle, level: float, upward: bool,
                      atr_hint: float, min_break_pct: float) -> bool:
    """Wick clears the level by a buffer and the close by a smaller margin."""
    candle_range = (candle.h - candle.l) or abs(candle.c - candle.o) or 1.0
    atr_threshold = atr_hint * 0.4 if atr_hint > 0 else candle_range * 0.35
    buffer = max(level * min_break_pct, atr_threshold * 0.1)
    if upward:
        return candle.h > level + buffer and candle.c > level + atr_threshold * 0.25
    return candle.l < level - buffer and candle.c < level - atr_threshold * 0.25


def detect_structure_shifts(candles: Sequence[Candle],
                            swings: Sequence[Swing],
                            atr_hint: float = 0.0,
                            options: Optional[StructureShiftOptions] = None,
                            start_index: int = 0) -> List[StructureShift]:
    """
    Scan bars left to right, tracking the latest confirmed swing high and
    low, and record a shift whenever a bar displaces through one of them
    against the current trend state.

    The first shift is always BOS. A shift that flips an established state is
    CHoCH. A break in the direction of the current state is ignored, so
    consecutive shifts never share a direction. Only the latest 30 are
    returned.

    ``start_index`` is the position of ``candles[0]`` in the series the
    swings were detected on, for scans over a trailing slice.
    """
    if not candles or len(swings) < 2:
        return []
    opts = options or StructureShiftOptions()

    ordered = sorted(swings, key=lambda s: s.time)
    highs = [s for s in ordered if s.type is SwingType.HIGH]
    lows = [s for s in ordered if s.type is SwingType.LOW]

    shifts: List[StructureShift] = []
    high_idx = low_idx = -1
    state: Optional[Polarity] = None
    last_shift_bar = None

    for bar, candle in enumerate(candles):
        while high_idx + 1 < len(highs) and highs[high_idx + 1].time <= candle.t:
            high_idx += 1
        while low_idx + 1 < len(lows) and lows[low_idx + 1].time <= candle.t:
            low_idx += 1
        active_high = highs[high_idx] if high_idx >= 0 else None
        active_low = lows[low_idx] if low_idx >= 0 else None

        broke_high = (
            active_high is not None
            and start_index + bar - active_high.index >= opts.min_swing_distance
            and _has_displacement(candle, active_high.price, True, atr_hint, opts.min_break_pct)
        )
        broke_low = (
            active_low is not None
            and start_index + bar - active_low.index >= opts.min_swing_distance
            and _has_displacement(candle, active_low.price, False, atr_hint, opts.min_break_pct)
        )

        if broke_high and state is not Polarity.BULLISH:
            new_state, level = Polarity.BULLISH, active_high.price
        elif broke_low and state is not Polarity.BEARISH:
            new_state, level = Polarity.BEARISH, active_low.price
        else:
            continue

        if last_shift_bar is not None and bar - last_shift_bar < opts.min_spacing_bars:
            continue

        label = ShiftLabel.BOS if state is None else ShiftLabel.CHOCH
        shifts.append(StructureShift(candle.t, level, new_state, label))
        state = new_state
        last_shift_bar = bar

    return shifts[-MAX_SHIFTS:]
