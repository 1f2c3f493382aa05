"""
Model 2022 Detector

Resamples intraday candles onto a 15-minute grid and reuses the structure
and zone primitives at that resolution: a liquidity grab, a shift in the
same direction and a displacement gap form the setup. Also derives the
supporting context (strong/weak swings, order blocks with displacement,
daily candle and daily liquidity).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .indicators import ATR
from .indicators.base import candles_to_frame
from .models import (
    Bias, BiasLabel, Candle, Direction, Gap, OrderBlock, Polarity, Signal,
    StructureShift, StructureShiftOptions, Swing, SwingType, SweepDirection,
)
from .structure import detect_structure_shifts, detect_swings
from .timeutils import EASTERN, HOUR_MS, MINUTE_MS, group_by_day, hour_in_tz, infer_timeframe_ms
from .zones import detect_fvg, detect_liquidity_sweeps

logger = logging.getLogger(__name__)

M15_MS = 15 * MINUTE_MS
MODEL_2022_SETUP = 'Model 2022 M15 FVG'
MAX_MODEL_SIGNALS = 8


@dataclass(frozen=True)
class StrongWeakSwing:
    swing: Swing
    strength: str  # "strong" | "weak"


@dataclass(frozen=True)
class DailyCandle:
    date: str
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class DailyLevel:
    date: str
    price: float


@dataclass
class DailyLiquidity:
    pdh: Optional[float] = None
    pdl: Optional[float] = None
    last3_highs: List[DailyLevel] = field(default_factory=list)
    last3_lows: List[DailyLevel] = field(default_factory=list)
    midnight_open: Optional[float] = None


@dataclass(frozen=True)
class Model2022Signal:
    time: int
    direction: Direction
    label: str
    fvg: Gap
    entry: float
    stop: float
    basis: tuple


@dataclass
class Model2022State:
    strong_swings: List[StrongWeakSwing] = field(default_factory=list)
    ob_with_displacement: List[OrderBlock] = field(default_factory=list)
    daily_candle: Optional[DailyCandle] = None
    daily_liquidity: DailyLiquidity = field(default_factory=DailyLiquidity)
    m15_signals: List[Model2022Signal] = field(default_factory=list)


def build_model2022_state(candles: Sequence[Candle],
                          swings: Sequence[Swing] = (),
                          gaps: Sequence[Gap] = (),
                          order_blocks: Sequence[OrderBlock] = (),
                          bias: Optional[Bias] = None,
                          shifts: Optional[Sequence[StructureShift]] = None) -> Model2022State:
    return Model2022State(
        strong_swings=derive_strong_weak_swings(swings, bias, shifts),
        ob_with_displacement=filter_blocks_with_displacement(order_blocks, gaps, candles),
        daily_candle=compute_daily_candle(candles),
        daily_liquidity=compute_daily_liquidity(candles),
        m15_signals=detect_model2022_signals(candles),
    )


def derive_strong_weak_swings(swings: Sequence[Swing], bias: Optional[Bias] = None,
                              shifts: Optional[Sequence[StructureShift]] = None) -> List[StrongWeakSwing]:
    """
    In a bullish leg the lows are protected (strong); in a bearish leg the
    highs are. Direction comes from the latest shift, else the bias.
    """
    direction = shifts[-1].direction if shifts else None
    if direction is None and bias is not None:
        direction = {BiasLabel.BULLISH: Polarity.BULLISH,
                     BiasLabel.BEARISH: Polarity.BEARISH}.get(bias.label)

    result = []
    for swing in swings:
        if direction is Polarity.BULLISH:
            strong = swing.type is SwingType.LOW
        elif direction is Polarity.BEARISH:
            strong = swing.type is SwingType.HIGH
        else:
            strong = False
        result.append(StrongWeakSwing(swing, 'strong' if strong else 'weak'))
    return result


def filter_blocks_with_displacement(order_blocks: Sequence[OrderBlock], gaps: Sequence[Gap],
                                    candles: Sequence[Candle]) -> List[OrderBlock]:
    """Blocks followed by a same-type gap starting within six frames."""
    if not order_blocks or not gaps:
        return []
    frame = infer_timeframe_ms(candles)
    lookahead = frame * 6 if frame else 6 * HOUR_MS
    return [
        ob for ob in order_blocks
        if any(g.type is ob.type and ob.end_time <= g.start_time <= ob.end_time + lookahead for g in gaps)
    ]


def compute_daily_candle(candles: Sequence[Candle]) -> Optional[DailyCandle]:
    if not candles:
        return None
    days = group_by_day(candles)
    date, day = next(reversed(days.items()))
    return DailyCandle(date, day[0].o, max(c.h for c in day), min(c.l for c in day), day[-1].c)


def compute_daily_liquidity(candles: Sequence[Candle]) -> DailyLiquidity:
    days = group_by_day(candles)
    keys = list(days)
    if not keys:
        return DailyLiquidity()
    history = keys[:-1]
    prev_day = days[history[-1]] if history else []
    return DailyLiquidity(
        pdh=max(c.h for c in prev_day) if prev_day else None,
        pdl=min(c.l for c in prev_day) if prev_day else None,
        last3_highs=[DailyLevel(k, max(c.h for c in days[k])) for k in history[-3:]],
        last3_lows=[DailyLevel(k, min(c.l for c in days[k])) for k in history[-3:]],
        midnight_open=days[keys[-1]][0].o,
    )


def aggregate_candles(candles: Sequence[Candle], interval_ms: int) -> List[Candle]:
    """Floor-aligned OHLCV buckets of ``interval_ms``."""
    if not candles:
        return []
    df = candles_to_frame(candles)
    df['bucket'] = (df['time'] // interval_ms) * interval_ms
    grouped = df.groupby('bucket', sort=True).agg(
        open=('open', 'first'),
        high=('high', 'max'),
        low=('low', 'min'),
        close=('close', 'last'),
        volume=('volume', 'sum'),
    )
    return [
        Candle(int(bucket), float(row.open), float(row.high), float(row.low),
               float(row.close), float(row.volume))
        for bucket, row in grouped.iterrows()
    ]


def detect_model2022_signals(candles: Sequence[Candle]) -> List[Model2022Signal]:
    if len(candles) < 10:
        return []
    frame = infer_timeframe_ms(candles)
    if not frame or frame > M15_MS * 1.1:
        return []
    m15 = aggregate_candles(candles, M15_MS)
    if len(m15) < 20:
        return []

    swings = detect_swings(m15, 2)
    shifts = detect_structure_shifts(m15, swings, 0, StructureShiftOptions(min_break_pct=0.00005))
    gaps = detect_fvg(m15)
    sweeps = detect_liquidity_sweeps(m15)
    atr = ATR(14).series(m15)

    signals: List[Model2022Signal] = []
    for gap in gaps:
        bullish = gap.type is Polarity.BULLISH
        want_sweep = SweepDirection.DOWN if bullish else SweepDirection.UP
        if not any(s.time <= gap.start_time and s.direction is want_sweep for s in sweeps):
            continue
        shift = next((s for s in reversed(shifts) if s.time <= gap.end_time), None)
        if shift is None or shift.direction is not gap.type:
            continue
        idx = next((k for k, c in enumerate(m15) if c.t >= gap.start_time), None)
        if idx is None:
            continue
        candle = m15[idx]
        atr_value = atr[idx] or 0.0
        if atr_value > 0 and candle.body < atr_value * 0.7:
            continue

        basis = [
            'Liquidity grab of lows' if bullish else 'Liquidity grab of highs',
            f"{shift.label.value} with displacement",
            '15m FVG formed',
        ]
        if 7 <= hour_in_tz(candle.t, EASTERN) < 10:
            basis.append('NY Kill Zone 07:00-10:00')
        signals.append(Model2022Signal(
            time=gap.start_time,
            direction=Direction.BUY if bullish else Direction.SELL,
            label='BUY SETUP' if bullish else 'SELL SETUP',
            fvg=gap,
            entry=gap.lower if bullish else gap.upper,
            stop=gap.upper if bullish else gap.lower,
            basis=tuple(basis),
        ))

    logger.debug(f"Model 2022: {len(signals)} setups on {len(m15)} 15m bars")
    return signals[-MAX_MODEL_SIGNALS:]


def to_signals(model_signals: Sequence[Model2022Signal]) -> List[Signal]:
    """
    Engine-shaped signals. The stop sits past the far edge of the gap, widened
    to at least 0.12% of entry (or half the gap) when the gap is thin.
    Targets sit at 2R and 3R.
    """
    result = []
    for ms in model_signals:
        sign = ms.direction.sign
        gap_risk = abs(ms.entry - ms.stop)
        risk = max(gap_risk, abs(ms.entry) * 0.0012, gap_risk * 0.5)
        result.append(Signal(
            time=ms.time,
            price=ms.entry,
            direction=ms.direction,
            basis=' • '.join(ms.basis),
            setup=MODEL_2022_SETUP,
            stop=ms.entry - sign * risk,
            tp1=ms.entry + sign * risk * 2,
            tp2=ms.entry + sign * risk * 3,
            session='New York',
        ))
    return result
