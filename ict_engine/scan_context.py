"""
Signal scan context

Three layers of state for the signal engine's forward pass:

- ``MarketInputs``: detector outputs and indicator series, fixed for the pass
- ``BarContext``: everything derived for the bar under evaluation
- ``ScanState``: the running state carried from bar to bar (cooldowns,
  caps, bias freeze, Asia range, liquidity voids, inversion gaps)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .indicators import ATR, EMA
from .models import (
    Bias, BiasLabel, BreakerBlock, Candle, Direction, Gap, HtfLevels,
    LiquiditySweep, OrderBlock, Polarity, PremiumDiscountRange, SessionOpenLevels,
    SessionZone, Signal, StructureShift, Swing, SweepDirection,
)
from .sessions import compute_session_open_levels, is_london_or_ny
from .structure import detect_structure_shifts
from .timeutils import group_by_day
from .zones import compute_anchored_pd_range, compute_premium_discount_range, weekly_pd_range

ATR_PERIOD = 14
EMA_FAST = 34
EMA_SLOW = 89
SHIFT_LOOKBACK_BARS = 300
LOCAL_RANGE_BARS = 80


# ═══════════════════════════════════════════════════════════════════════════
# MARKET INPUTS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class MarketInputs:
    """Detector outputs the engine consumes, plus per-bar indicator series."""
    candles: List[Candle]
    bias: Bias
    gaps: List[Gap] = field(default_factory=list)
    blocks: List[OrderBlock] = field(default_factory=list)
    sessions: List[SessionZone] = field(default_factory=list)
    swings: List[Swing] = field(default_factory=list)
    sweeps: List[LiquiditySweep] = field(default_factory=list)
    breakers: List[BreakerBlock] = field(default_factory=list)
    premium_range: Optional[PremiumDiscountRange] = None
    htf: Optional[HtfLevels] = None

    atr: List[float] = field(default_factory=list)
    ema_fast: List[Optional[float]] = field(default_factory=list)
    ema_slow: List[Optional[float]] = field(default_factory=list)
    session_opens: Dict[str, SessionOpenLevels] = field(default_factory=dict)
    weekly_range: Optional[PremiumDiscountRange] = None
    days: Dict[str, List[Candle]] = field(default_factory=dict)
    day_keys: List[str] = field(default_factory=list)
    day_index: Dict[str, int] = field(default_factory=dict)
    _prior_ranges: Dict[str, Optional[Tuple[float, float]]] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        self.atr = [v or 0.0 for v in ATR(ATR_PERIOD).series(self.candles)]
        self.ema_fast = EMA(EMA_FAST).series(self.candles)
        self.ema_slow = EMA(EMA_SLOW).series(self.candles)
        self.session_opens = compute_session_open_levels(self.candles, self.sessions)
        self.weekly_range = weekly_pd_range(self.htf)
        self.days = group_by_day(self.candles)
        self.day_keys = list(self.days)
        self.day_index = {key: idx for idx, key in enumerate(self.day_keys)}

    def pd_range(self, index: int) -> Optional[PremiumDiscountRange]:
        """Anchored swing range, else the caller's range, else the last 80 bars."""
        return (
            compute_anchored_pd_range(self.candles, self.swings, index)
            or self.premium_range
            or compute_premium_discount_range(self.candles[max(0, index - LOCAL_RANGE_BARS):index + 1])
        )

    def prior_days_range(self, day: str, lookback: int = 20,
                         minimum: int = 10) -> Optional[Tuple[float, float]]:
        """(high, low) across up to ``lookback`` UTC days before ``day``."""
        if day not in self._prior_ranges:
            result = None
            idx = self.day_index.get(day, -1)
            if idx > 0:
                keys = self.day_keys[max(0, idx - lookback):idx]
                if len(keys) >= min(lookback, minimum):
                    prior = [c for key in keys for c in self.days[key]]
                    if prior:
                        result = (max(c.h for c in prior), min(c.l for c in prior))
            self._prior_ranges[day] = result
        return self._prior_ranges[day]

    def last_sweep(self, t: int, direction: Optional[SweepDirection] = None) -> Optional[LiquiditySweep]:
        found = None
        for sweep in self.sweeps:
            if sweep.time <= t and (direction is None or sweep.direction is direction):
                found = sweep
        return found

    def recent_gap(self, t: int) -> Optional[Gap]:
        return next((g for g in reversed(self.gaps) if g.end_time <= t), None)

    def recent_breaker(self, t: int) -> Optional[BreakerBlock]:
        return next((b for b in reversed(self.breakers) if b.end_time <= t), None)

    def last_shift(self, index: int, atr: float) -> Optional[StructureShift]:
        """Latest structure shift over the trailing window ending at ``index``."""
        if not self.swings:
            return None
        start = max(0, index - SHIFT_LOOKBACK_BARS)
        shifts = detect_structure_shifts(
            self.candles[start:index + 1], self.swings, atr, start_index=start,
        )
        return shifts[-1] if shifts else None


# ═══════════════════════════════════════════════════════════════════════════
# PER-BAR CONTEXT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PowerOfThree:
    direction: Direction
    entry: float
    anchor: float
    reason: str


@dataclass
class BarContext:
    index: int
    candle: Candle
    prev: Candle
    session: SessionZone
    hour: int
    day_key: str
    bias_label: BiasLabel
    atr: float
    proximity: float
    is_london_or_ny: bool
    kill_zone: bool
    session_allowed: bool
    silver_bullet_window: bool
    bullish_confirm: bool
    bearish_confirm: bool
    pd_range: Optional[PremiumDiscountRange]
    weekly_range: Optional[PremiumDiscountRange]
    discount: bool
    premium: bool
    weekly_discount: bool
    weekly_premium: bool
    near_pd_high: bool
    near_pd_low: bool
    institutional_buy_zone: bool
    institutional_sell_zone: bool
    htf_buy_zone: bool
    htf_sell_zone: bool
    ema_fast: Optional[float]
    ema_slow: Optional[float]
    last_sweep: Optional[LiquiditySweep]
    power_of_three: Optional[PowerOfThree]
    day_levels: Optional[SessionOpenLevels]
    shift: Optional[StructureShift] = None

    @property
    def is_kill_zone(self) -> bool:
        """Kill zone membership that counts for confluence (London/NY only)."""
        return self.kill_zone and self.is_london_or_ny

    @property
    def discount_context(self) -> bool:
        return self.discount or self.weekly_discount

    @property
    def premium_context(self) -> bool:
        return self.premium or self.weekly_premium

    @property
    def up_candle(self) -> bool:
        return self.candle.c >= self.candle.o

    def shift_is(self, polarity: Polarity) -> bool:
        return self.shift is not None and self.shift.direction is polarity

    def htf_zone(self, direction: Direction) -> bool:
        return self.htf_buy_zone if direction is Direction.BUY else self.htf_sell_zone

    def confirms(self, direction: Direction) -> bool:
        return self.bullish_confirm if direction is Direction.BUY else self.bearish_confirm

    def bias_supports(self, direction: Direction) -> bool:
        """Bias label or HTF zone on the side of ``direction``."""
        if direction is Direction.BUY:
            return self.htf_buy_zone or self.bias_label is BiasLabel.BULLISH
        return self.htf_sell_zone or self.bias_label is BiasLabel.BEARISH

    def fully_supports(self, direction: Direction) -> bool:
        if direction is Direction.BUY:
            return self.bias_label is BiasLabel.BULLISH and self.htf_buy_zone
        return self.bias_label is BiasLabel.BEARISH and self.htf_sell_zone


def detect_power_of_three(candles: Sequence[Candle], index: int, session: SessionZone,
                          asia: Optional['AsiaRange']) -> Optional[PowerOfThree]:
    """
    Tight accumulation over bars ``[i-10, i-2)`` followed by a London/NY bar
    that raids the Asia range and closes back the other way.
    """
    if not is_london_or_ny(session.label) or index < 12:
        return None
    window = candles[max(0, index - 10):index - 2]
    if len(window) < 6:
        return None
    span = max(c.h for c in window) - min(c.l for c in window)
    avg_body = sum(c.body for c in window) / len(window)
    if span > (avg_body or 1) * 5:
        return None
    if asia is None or not asia.active:
        return None

    candle, prev = candles[index], candles[index - 1]
    swept_low = candle.l <= asia.low * 1.0005 and prev.c > asia.low
    swept_high = candle.h >= asia.high * 0.9995 and prev.c < asia.high
    if swept_low and candle.c > candle.o:
        return PowerOfThree(Direction.BUY, candle.c, min(candle.l, asia.low),
                            'Power of three: accumulation + manipulation low')
    if swept_high and candle.c < candle.o:
        return PowerOfThree(Direction.SELL, candle.c, max(candle.h, asia.high),
                            'Power of three: accumulation + manipulation high')
    return None


# ═══════════════════════════════════════════════════════════════════════════
# RUNNING STATE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AsiaRange:
    day: str
    high: float
    low: float
    active: bool = False
    last_sweep_bar: Optional[int] = None
    last_breakout_time: Optional[int] = None


@dataclass(frozen=True)
class LiquidityVoid:
    direction: SweepDirection
    midpoint: float
    top: float
    bottom: float
    time: int


@dataclass(frozen=True)
class InversionGap:
    type: Polarity
    level: float
    expiry: int


@dataclass
class ScanState:
    """Mutable state threaded through the engine's bar loop."""
    signals: List[Signal] = field(default_factory=list)
    last_signal_index: Dict[str, int] = field(default_factory=dict)
    last_signal_bar: Optional[int] = None
    last_direction: Optional[Direction] = None
    last_priority: int = 0
    signals_per_bar: Dict[int, int] = field(default_factory=dict)
    signals_per_day: Dict[str, int] = field(default_factory=dict)
    tier_two_sessions: Dict[str, int] = field(default_factory=dict)

    active_day_key: Optional[str] = None
    active_day_bias: Optional[BiasLabel] = None
    bias_freeze: bool = False
    bias_freeze_until: Optional[int] = None

    asia_range: Optional[AsiaRange] = None
    liquidity_voids: List[LiquidityVoid] = field(default_factory=list)
    inversion_gaps: List[InversionGap] = field(default_factory=list)

    def bars_since_signal(self, index: int) -> float:
        if self.last_signal_bar is None:
            return float('inf')
        return index - self.last_signal_bar

    def update_bias_freeze(self, day: str, label: BiasLabel, t: int, freeze_ms: int) -> None:
        """
        Track the first directional bias of each UTC day. A flip to the
        opposite label freezes admissions for ``freeze_ms`` and re-arms while
        the flip persists; the freeze lifts once the day's label returns.
        """
        directional = label is not BiasLabel.NEUTRAL
        if self.active_day_key != day:
            self.active_day_key = day
            self.active_day_bias = label if directional else None
            self.bias_freeze_until = None
            self.bias_freeze = False
        elif self.active_day_bias is None and directional:
            self.active_day_bias = label
            self.bias_freeze_until = None
            self.bias_freeze = False
        elif (self.active_day_bias is not None and directional
              and label is not self.active_day_bias
              and (self.bias_freeze_until is None or t >= self.bias_freeze_until)):
            self.bias_freeze_until = t + freeze_ms
            self.bias_freeze = True
        elif self.bias_freeze_until is not None and t >= self.bias_freeze_until and directional:
            self.active_day_bias = label
            self.bias_freeze_until = None
            self.bias_freeze = False
        else:
            self.bias_freeze = self.bias_freeze_until is not None and t < self.bias_freeze_until

    def update_asia_range(self, session_label: str, day: str, candle: Candle) -> None:
        """Accumulate the Asia range; it becomes active once Asia is over."""
        if session_label == 'Asia':
            if self.asia_range is None or self.asia_range.day != day:
                self.asia_range = AsiaRange(day, candle.h, candle.l)
            else:
                self.asia_range.high = max(self.asia_range.high, candle.h)
                self.asia_range.low = min(self.asia_range.low, candle.l)
        elif self.asia_range is not None and self.asia_range.day == day:
            self.asia_range.active = True

    @property
    def asia_active(self) -> bool:
        return self.asia_range is not None and self.asia_range.active

    def record(self, signal: Signal, index: int, day: str, priority: int) -> None:
        self.signals.append(signal)
        self.last_signal_index[signal.setup or 'default'] = index
        self.last_signal_bar = index
        self.last_direction = signal.direction
        self.last_priority = priority
        self.signals_per_bar[index] = self.signals_per_bar.get(index, 0) + 1
        self.signals_per_day[day] = self.signals_per_day.get(day, 0) + 1
