"""
Zone Detectors
==============

Supply/demand and liquidity zones derived from candles:

- Fair value gaps (3-candle imbalances)
- Order blocks and the breaker blocks they turn into once invalidated
- Equal highs/lows and the liquidity sweeps that trade through them
- Premium/discount dealing ranges and higher-timeframe reference levels
- SMT divergence against a correlated instrument

Every detector is a pure function of its inputs.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

from .models import (
    BreakerBlock, BreakerGrade, Candle, Direction, EqualLiquidityLevel, Gap,
    HtfLevels, LiquiditySweep, OrderBlock, Polarity, PremiumDiscountRange,
    SmtSignal, SweepDirection, SweepType, Swing, SwingType,
)
from .timeutils import group_by_day, group_by_week, to_utc

logger = logging.getLogger(__name__)

MAX_BREAKERS = 10
MAX_SWEEPS = 20
MAX_EQUAL_LEVELS = 20
MAX_SMT_SIGNALS = 20


# ═══════════════════════════════════════════════════════════════════════════
# 1. IMBALANCES
# ═══════════════════════════════════════════════════════════════════════════

def detect_fvg(candles: Sequence[Candle]) -> List[Gap]:
    """
    Bullish gap at (a, b, c) iff a.h < c.l and b.l > a.h and b.l > c.h;
    bearish iff a.l > c.h and b.h < a.l and b.h < c.l.
    """
    gaps: List[Gap] = []
    for i in range(1, len(candles) - 1):
        a, b, c = candles[i - 1], candles[i], candles[i + 1]
        if a.h < c.l and b.l > a.h and b.l > c.h:
            gaps.append(Gap(a.t, c.t, top=a.h, bottom=c.l, type=Polarity.BULLISH))
        if a.l > c.h and b.h < a.l and b.h < c.l:
            gaps.append(Gap(a.t, c.t, top=c.h, bottom=a.l, type=Polarity.BEARISH))
    return gaps


def has_clear_path(price: float, target: float, direction: Direction,
                   gaps: Sequence[Gap]) -> bool:
    """
    False when an opposing gap edge sits strictly between price and target.
    Non-finite inputs and targets on the wrong side count as clear.
    """
    if not _finite(price) or not _finite(target):
        return True
    if direction is Direction.BUY:
        if target <= price:
            return True
        return not any(
            g.type is Polarity.BEARISH and price < g.bottom < target for g in gaps
        )
    if target >= price:
        return True
    return not any(
        g.type is Polarity.BULLISH and target < g.top < price for g in gaps
    )


def _finite(value) -> bool:
    return value is not None and math.isfinite(value)


# ═══════════════════════════════════════════════════════════════════════════
# 2. ORDER BLOCKS / BREAKERS
# ═══════════════════════════════════════════════════════════════════════════

def detect_order_blocks(candles: Sequence[Candle], window: int = 5) -> List[OrderBlock]:
    """
    Last opposite-coloured candle before the next bar breaks the prior
    ``window``-bar range. A down candle followed by a break above the
    range high is a bullish block, and the reverse is bearish.
    """
    blocks: List[OrderBlock] = []
    for i in range(1, len(candles) - 1):
        current, nxt = candles[i], candles[i + 1]
        prior = candles[max(0, i - window):i]
        prev_high = max(c.h for c in prior)
        prev_low = min(c.l for c in prior)

        if current.c < current.o and nxt.h > prev_high:
            blocks.append(OrderBlock(current.t, nxt.t, current.h, current.l, Polarity.BULLISH))
        if current.c > current.o and nxt.l < prev_low:
            blocks.append(OrderBlock(current.t, nxt.t, current.h, current.l, Polarity.BEARISH))
    return dedupe_blocks(blocks)


def dedupe_blocks(blocks: Sequence[OrderBlock]) -> List[OrderBlock]:
    unique: List[OrderBlock] = []
    for block in blocks:
        duplicate = any(
            b.type is block.type
            and abs(b.start_time - block.start_time) < 1000
            and abs(b.high - block.high) < 1e-8
            and abs(b.low - block.low) < 1e-8
            for b in unique
        )
        if not duplicate:
            unique.append(block)
    return unique


def _grade(displacement: float) -> BreakerGrade:
    if displacement > 1:
        return BreakerGrade.STRONG
    if displacement > 0.5:
        return BreakerGrade.MEDIUM
    return BreakerGrade.WEAK


def detect_breaker_blocks(order_blocks: Sequence[OrderBlock],
                          candles: Sequence[Candle]) -> List[BreakerBlock]:
    """
    Order blocks invalidated by a later close beyond their far boundary.
    The breaker takes the opposite type and is graded by how far the close
    went past the boundary relative to the violating candle's range.
    """
    breakers: List[BreakerBlock] = []
    if not order_blocks or not candles:
        return breakers

    for ob in order_blocks:
        if ob.type is Polarity.BULLISH:
            violating = next((c for c in candles if c.t > ob.end_time and c.c < ob.low), None)
        else:
            violating = next((c for c in candles if c.t > ob.end_time and c.c > ob.high), None)
        if violating is None:
            continue

        span = max(1e-9, violating.h - violating.l)
        distance = ob.low - violating.c if ob.type is Polarity.BULLISH else violating.c - ob.high
        breakers.append(BreakerBlock(
            start_time=ob.start_time,
            end_time=violating.t,
            high=ob.high,
            low=ob.low,
            type=ob.type.opposite,
            source_ob_type=ob.type,
            grade=_grade(distance / span),
        ))
    return breakers[-MAX_BREAKERS:]


# ═══════════════════════════════════════════════════════════════════════════
# 3. LIQUIDITY
# ═══════════════════════════════════════════════════════════════════════════

def detect_equal_highs_lows(candles: Sequence[Candle],
                            tolerance_pct: float = 0.0005) -> List[EqualLiquidityLevel]:
    levels: List[EqualLiquidityLevel] = []
    for prev, cur in zip(candles, candles[1:]):
        if abs(cur.h - prev.h) <= prev.h * tolerance_pct:
            levels.append(EqualLiquidityLevel((cur.h + prev.h) / 2, (prev.t, cur.t), 'highs'))
        if abs(cur.l - prev.l) <= prev.l * tolerance_pct:
            levels.append(EqualLiquidityLevel((cur.l + prev.l) / 2, (prev.t, cur.t), 'lows'))
    return levels[-MAX_EQUAL_LEVELS:]


def detect_liquidity_sweeps(candles: Sequence[Candle],
                            tolerance_pct: float = 0.0005,
                            min_spacing_bars: int = 3) -> List[LiquiditySweep]:
    """
    Cluster consecutive equal highs/lows into levels, then flag the bars that
    trade through them.

    A level is taken by the first bar after it that pierces it. The bar must
    sit at least ``min_spacing_bars`` after the previous sweep of the same
    kind. Its level must also differ from that sweep's by more than the
    tolerance, so the same cluster is not re-flagged bar after bar.
    """
    sweeps: List[LiquiditySweep] = []
    if len(candles) < 3:
        return sweeps

    high_levels = []
    low_levels = []
    for prev, cur in zip(candles, candles[1:]):
        if abs(cur.h - prev.h) <= prev.h * tolerance_pct:
            high_levels.append(((cur.h + prev.h) / 2, cur.t))
        if abs(cur.l - prev.l) <= prev.l * tolerance_pct:
            low_levels.append(((cur.l + prev.l) / 2, cur.t))

    last_high_idx = last_low_idx = None
    last_high_price = last_low_price = None

    def _spaced(i, last_idx):
        return last_idx is None or i - last_idx >= min_spacing_bars

    def _distinct(price, last_price):
        return last_price is None or abs(price - last_price) > price * tolerance_pct

    for i in range(1, len(candles)):
        c = candles[i]
        swept_high = next((p for p, t in high_levels if c.h > p and c.t > t), None)
        if swept_high is not None and _spaced(i, last_high_idx) and _distinct(swept_high, last_high_price):
            sweeps.append(LiquiditySweep(c.t, swept_high, SweepType.EQH, SweepDirection.UP))
            last_high_idx, last_high_price = i, swept_high

        swept_low = next((p for p, t in low_levels if c.l < p and c.t > t), None)
        if swept_low is not None and _spaced(i, last_low_idx) and _distinct(swept_low, last_low_price):
            sweeps.append(LiquiditySweep(c.t, swept_low, SweepType.EQL, SweepDirection.DOWN))
            last_low_idx, last_low_price = i, swept_low

    return sweeps[-MAX_SWEEPS:]


def detect_smt_signals(primary: Sequence[Candle], secondary: Sequence[Candle],
                       lookback: int = 100) -> List[SmtSignal]:
    """Divergence between correlated instruments on matching timestamps."""
    signals: List[SmtSignal] = []
    if not primary or not secondary:
        return signals

    secondary_by_time: Dict[int, Candle] = {c.t: c for c in secondary[-lookback:]}
    for i in range(max(1, len(primary) - lookback), len(primary)):
        current, prev = primary[i], primary[i - 1]
        current_sec = secondary_by_time.get(current.t)
        prev_sec = secondary_by_time.get(prev.t)
        if current_sec is None or prev_sec is None:
            continue
        if current.h > prev.h and not current_sec.h > prev_sec.h:
            signals.append(SmtSignal(current.t, Direction.SELL, 'Primary made HH, secondary did not'))
        if current.l < prev.l and not current_sec.l < prev_sec.l:
            signals.append(SmtSignal(current.t, Direction.BUY, 'Primary made LL, secondary held'))
    return signals[-MAX_SMT_SIGNALS:]


# ═══════════════════════════════════════════════════════════════════════════
# 4. RANGES AND REFERENCE LEVELS
# ═══════════════════════════════════════════════════════════════════════════

def compute_premium_discount_range(candles: Sequence[Candle]) -> Optional[PremiumDiscountRange]:
    if len(candles) < 2:
        return None
    high = max(c.h for c in candles)
    low = min(c.l for c in candles)
    return PremiumDiscountRange(high, low, (high + low) / 2)


def compute_anchored_pd_range(candles: Sequence[Candle], swings: Optional[Sequence[Swing]],
                              index: int) -> Optional[PremiumDiscountRange]:
    """Range spanned by the latest swing high and swing low up to bar ``index``."""
    if not swings or not 0 <= index < len(candles):
        return None
    cutoff = candles[index].t
    last_high = last_low = None
    for swing in swings:
        if swing.time > cutoff:
            continue
        if swing.type is SwingType.HIGH:
            last_high = swing
        else:
            last_low = swing
    if last_high is None or last_low is None:
        return None
    high = max(last_high.price, last_low.price)
    low = min(last_high.price, last_low.price)
    if high <= low:
        return None
    return PremiumDiscountRange(high, low, (high + low) / 2)


def weekly_pd_range(htf: Optional[HtfLevels]) -> Optional[PremiumDiscountRange]:
    if htf is None or htf.prev_week_high is None or htf.prev_week_low is None:
        return None
    if htf.prev_week_high <= htf.prev_week_low:
        return None
    return PremiumDiscountRange(
        htf.prev_week_high, htf.prev_week_low,
        (htf.prev_week_high + htf.prev_week_low) / 2,
    )


def compute_htf_levels(candles: Sequence[Candle]) -> HtfLevels:
    """
    Prior UTC day high/low, prior ISO week high/low, the current week's
    first open and the month open (first bar at 00:00 on the 1st, else the
    first bar supplied).
    """
    if not candles:
        return HtfLevels()

    days = list(group_by_day(candles).values())
    weeks = list(group_by_week(candles).values())
    prev_day = days[-2] if len(days) >= 2 else []
    prev_week = weeks[-2] if len(weeks) >= 2 else []

    month_open = candles[0].o
    for candle in sorted(candles, key=lambda c: c.t):
        dt = to_utc(candle.t)
        if dt.day == 1 and dt.hour == 0:
            month_open = candle.o
            break

    return HtfLevels(
        prev_day_high=max(c.h for c in prev_day) if prev_day else None,
        prev_day_low=min(c.l for c in prev_day) if prev_day else None,
        prev_week_high=max(c.h for c in prev_week) if prev_week else None,
        prev_week_low=min(c.l for c in prev_week) if prev_week else None,
        week_open=weeks[-1][0].o,
        month_open=month_open,
    )
