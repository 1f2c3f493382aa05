"""
Setup Rules
===========

The named setups the signal engine evaluates on every bar, in evaluation
order, together with their static profile (priority, tier, risk cap,
target multiples).

Each rule is a generator taking ``(ctx, market, state)`` and yielding
candidate signals. Candidates are admitted (or rejected) by the engine
as they are yielded, so a rule that updates scan state after yielding
observes the outcome of its own candidate on later bars only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .models import BiasLabel, Candle, Direction, Polarity, Signal, SweepDirection, SwingType
from .scan_context import BarContext, InversionGap, LiquidityVoid, MarketInputs, ScanState
from .sessions import is_new_york
from .structure import find_recent_swing
from .timeutils import HOUR_MS
from .zones import compute_premium_discount_range, has_clear_path

BUY, SELL = Direction.BUY, Direction.SELL

_BIAS = {BUY: BiasLabel.BULLISH, SELL: BiasLabel.BEARISH}
_SWEEP_INTO = {BUY: SweepDirection.DOWN, SELL: SweepDirection.UP}


class SetupKind(Enum):
    BIAS_OB_FVG_SESSION = 'Bias + OB/FVG + Session'
    CHOCH_FVG_OTE = 'CHoCH + FVG + OTE'
    PD_DISCOUNT = 'PD Array (Discount)'
    PD_PREMIUM = 'PD Array (Premium)'
    SWEEP_SHIFT = 'Sweep + Shift'
    BREAKER_RETEST = 'Breaker Retest'
    SWEEP_CHOCH = 'Sweep + CHoCH'
    TREND_PULLBACK = 'Trend Pullback'
    KILL_ZONE_LIQUIDITY = 'Kill Zone Liquidity Entry'
    POWER_OF_THREE = 'Power of Three Kill Zone'
    INSTITUTIONAL_KILL_ZONE = 'Institutional Kill Zone'
    ASIA_SWEEP_REVERSAL = 'Asia Sweep Reversal'
    BREAKER_FVG = 'Breaker + FVG'
    FVG_FILL_REJECTION = 'FVG Fill Rejection'
    INVERSION_FVG = 'Inversion FVG'
    BREAKER_CHOCH = 'Breaker + CHoCH'
    BREAKER_SWEEP = 'Breaker + Sweep'
    JUDAS_SWING = 'Judas Swing'
    SILVER_BULLET = 'Silver Bullet'
    TURTLE_SOUP = 'Turtle Soup'
    LIQUIDITY_VOID_RETURN = 'Liquidity Void Return'
    ASIAN_RANGE_BREAKOUT = 'Asian Range Breakout'
    MOMENTUM_CONTINUATION = 'Momentum Continuation'
    MEAN_REVERSION_FADE = 'Mean Reversion Fade'
    RANGE_BREAKOUT = 'Range Breakout'
    ENGULFING_SHIFT = 'Engulfing Shift'
    PULLBACK_REENTRY = 'Pullback Reentry'
    MODEL_2022 = 'Model 2022 M15 FVG'


@dataclass(frozen=True)
class SetupProfile:
    """Static admission attributes of a setup."""
    priority: int = 1
    tier_one: bool = False
    risk_cap: Optional[float] = None
    low_confluence: bool = False
    disabled: bool = False
    targets: Tuple[float, float] = (1.0, 2.0)


_LOW_CONFLUENCE = dict(low_confluence=True, disabled=True)

SETUP_PROFILES: Dict[SetupKind, SetupProfile] = {
    SetupKind.BIAS_OB_FVG_SESSION: SetupProfile(priority=5, tier_one=True),
    SetupKind.CHOCH_FVG_OTE: SetupProfile(priority=5, tier_one=True),
    SetupKind.INSTITUTIONAL_KILL_ZONE: SetupProfile(priority=4),
    SetupKind.KILL_ZONE_LIQUIDITY: SetupProfile(priority=4),
    SetupKind.POWER_OF_THREE: SetupProfile(priority=4),
    SetupKind.ASIA_SWEEP_REVERSAL: SetupProfile(priority=4),
    SetupKind.SILVER_BULLET: SetupProfile(priority=4, tier_one=True),
    SetupKind.TURTLE_SOUP: SetupProfile(priority=4, tier_one=True),
    SetupKind.BREAKER_FVG: SetupProfile(priority=3),
    SetupKind.PD_DISCOUNT: SetupProfile(priority=3),
    SetupKind.PD_PREMIUM: SetupProfile(priority=3),
    SetupKind.TREND_PULLBACK: SetupProfile(priority=2),
    SetupKind.MOMENTUM_CONTINUATION: SetupProfile(priority=2, risk_cap=2.0, **_LOW_CONFLUENCE),
    SetupKind.MEAN_REVERSION_FADE: SetupProfile(priority=2, risk_cap=1.5, **_LOW_CONFLUENCE),
    SetupKind.RANGE_BREAKOUT: SetupProfile(risk_cap=2.0, **_LOW_CONFLUENCE),
    SetupKind.PULLBACK_REENTRY: SetupProfile(risk_cap=1.8, **_LOW_CONFLUENCE),
}

DEFAULT_PROFILE = SetupProfile()


def profile_for(setup: Optional[str]) -> SetupProfile:
    """Profile for a setup name; unknown or missing names get the defaults."""
    try:
        return SETUP_PROFILES.get(SetupKind(setup), DEFAULT_PROFILE)
    except ValueError:
        return DEFAULT_PROFILE


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _signal(ctx: BarContext, kind: SetupKind, direction: Direction,
            entry: float, stop: float, *basis: str) -> Signal:
    """Candidate with 1R/2R targets when the stop is on the right side."""
    risk = (entry - stop) * direction.sign
    tp1 = tp2 = None
    if risk > 0:
        first, second = SETUP_PROFILES.get(kind, DEFAULT_PROFILE).targets
        tp1 = entry + direction.sign * risk * first
        tp2 = entry + direction.sign * risk * second
    return Signal(time=ctx.candle.t, price=entry, direction=direction,
                  basis=' • '.join(basis), setup=kind.value,
                  stop=stop, tp1=tp1, tp2=tp2)


def _touches(candle: Candle, low: float, high: float) -> bool:
    return candle.l <= high and candle.h >= low


def _clear(ctx: BarContext, market: MarketInputs, direction: Direction,
           reach: float, entry: Optional[float] = None) -> bool:
    price = ctx.candle.c if entry is None else entry
    target = price + direction.sign * ctx.proximity * reach
    return has_clear_path(price, target, direction, market.gaps)


def _swing_stop(ctx: BarContext, market: MarketInputs, direction: Direction,
                fallback: float) -> float:
    kind = SwingType.LOW if direction is BUY else SwingType.HIGH
    price = find_recent_swing(market.swings, kind, ctx.candle.t)
    return fallback if price is None else price


def _extreme(direction: Direction, *values: float) -> float:
    """Lowest value for buys, highest for sells."""
    return min(values) if direction is BUY else max(values)


def _session(ctx: BarContext) -> str:
    return f"Session {ctx.session.label}"


# ═══════════════════════════════════════════════════════════════════════════
# RULES
# ═══════════════════════════════════════════════════════════════════════════

Rule = Callable[[BarContext, MarketInputs, ScanState], Iterator[Signal]]


def bias_ob_fvg_session(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    candle, prev = ctx.candle, ctx.prev
    for direction in (BUY, SELL):
        polarity = direction.polarity
        if not (ctx.bias_label is _BIAS[direction] and ctx.session_allowed
                and ctx.confirms(direction) and ctx.htf_zone(direction)
                and ctx.shift_is(polarity) and _clear(ctx, market, direction, 3)):
            continue
        tapped_ob = next((b for b in market.blocks if b.type is polarity and b.end_time <= candle.t
                          and _touches(candle, b.low, b.high)), None)
        tapped_gap = next((g for g in market.gaps if g.type is polarity and g.end_time <= candle.t
                           and _touches(candle, g.bottom, g.top)), None)
        prev_agrees = prev.c >= prev.o if direction is BUY else prev.c <= prev.o
        if not ((tapped_ob or tapped_gap) and prev_agrees):
            continue
        stop = _swing_stop(ctx, market, direction, prev.l if direction is BUY else prev.h)
        if (candle.c - stop) * direction.sign <= 0:
            continue
        side = polarity.value.capitalize()
        tapped = f"Tapped {side} OB" if tapped_ob else f"Tapped {side} FVG"
        yield _signal(ctx, SetupKind.BIAS_OB_FVG_SESSION, direction, candle.c, stop,
                      f"Bias {polarity.value}", tapped, _session(ctx))


def choch_fvg_ote(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """CHoCH, then a return into the latest gap inside the 62-70.5% retracement."""
    if not (market.swings and market.gaps and ctx.session_allowed):
        return
    candle, i = ctx.candle, ctx.index
    gap = market.recent_gap(candle.t)
    if ctx.shift is None or gap is None:
        return
    span = compute_premium_discount_range(market.candles[max(0, i - 50):i + 1])
    if span is None:
        return
    width = span.high - span.low
    ote_a, ote_b = span.high - width * 0.62, span.high - width * 0.705
    in_ote = min(ote_a, ote_b) <= candle.c <= max(ote_a, ote_b)
    in_fvg = _touches(candle, gap.lower, gap.upper)
    if not (in_ote and in_fvg):
        return
    for direction in (BUY, SELL):
        if ctx.shift_is(direction.polarity) and ctx.confirms(direction) and ctx.htf_zone(direction):
            stop = _swing_stop(ctx, market, direction, ctx.prev.l if direction is BUY else ctx.prev.h)
            yield _signal(ctx, SetupKind.CHOCH_FVG_OTE, direction, candle.c, stop,
                          'CHoCH up' if direction is BUY else 'CHoCH down',
                          'FVG tap', 'Within OTE zone')


def _pd_array(ctx: BarContext, market: MarketInputs, direction: Direction) -> Iterator[Signal]:
    if not ((ctx.pd_range or ctx.weekly_range) and market.swings and ctx.session_allowed):
        return
    candle = ctx.candle
    buying = direction is BUY
    in_context = ctx.discount_context if buying else ctx.premium_context
    sweep = market.last_sweep(candle.t, _SWEEP_INTO[direction])
    if not (in_context and ctx.bias_label is _BIAS[direction]
            and ctx.shift_is(direction.polarity) and sweep is not None
            and ctx.confirms(direction) and ctx.htf_zone(direction)
            and ctx.is_kill_zone and _clear(ctx, market, direction, 2.5)):
        return
    if buying:
        swing = _swing_stop(ctx, market, BUY, candle.l)
        label = ('Discount array' if ctx.discount
                 else 'Weekly discount array' if ctx.weekly_discount else 'Discount context')
        kind, shifted = SetupKind.PD_DISCOUNT, 'BOS/CHoCH up'
    else:
        swing = _swing_stop(ctx, market, SELL, candle.h)
        label = ('Premium array' if ctx.premium
                 else 'Weekly premium array' if ctx.weekly_premium else 'Premium context')
        kind, shifted = SetupKind.PD_PREMIUM, 'BOS/CHoCH down'
    stop = _extreme(direction, swing, candle.l if buying else candle.h)
    yield _signal(ctx, kind, direction, candle.c, stop, label, shifted, _session(ctx))


def pd_array_discount(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    yield from _pd_array(ctx, market, BUY)


def pd_array_premium(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    yield from _pd_array(ctx, market, SELL)


def sweep_shift(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    sweep = ctx.last_sweep
    if not (market.sweeps and ctx.session_allowed and sweep is not None):
        return
    for direction in (SELL, BUY):
        if (sweep.direction is _SWEEP_INTO[direction] and ctx.confirms(direction)
                and ctx.bias_label is _BIAS[direction] and ctx.htf_zone(direction)
                and ctx.is_kill_zone):
            if direction is SELL:
                yield _signal(ctx, SetupKind.SWEEP_SHIFT, SELL, ctx.candle.c, sweep.price * 1.0002,
                              'EQH sweep', 'Looking for shift lower')
            else:
                yield _signal(ctx, SetupKind.SWEEP_SHIFT, BUY, ctx.candle.c, sweep.price * 0.9998,
                              'EQL sweep', 'Looking for shift higher')
            return


def breaker_retest(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (market.breakers and ctx.session_allowed):
        return
    breaker = market.recent_breaker(ctx.candle.t)
    if breaker is None or not _touches(ctx.candle, breaker.low, breaker.high):
        return
    direction = BUY if breaker.type is Polarity.BULLISH else SELL
    if ctx.confirms(direction) and ctx.htf_zone(direction):
        stop = breaker.low if direction is BUY else breaker.high
        side = 'Bull' if direction is BUY else 'Bear'
        yield _signal(ctx, SetupKind.BREAKER_RETEST, direction, ctx.candle.c, stop,
                      f"{side} breaker ({breaker.grade.value})", 'Retest within block')


def sweep_choch(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (market.sweeps and market.swings and ctx.session_allowed):
        return
    sweep, shift = ctx.last_sweep, ctx.shift
    if sweep is None or shift is None or shift.time < sweep.time:
        return
    for direction in (SELL, BUY):
        if (sweep.direction is _SWEEP_INTO[direction] and shift.direction is direction.polarity
                and ctx.confirms(direction) and ctx.htf_zone(direction)
                and ctx.is_kill_zone and _clear(ctx, market, direction, 3)):
            if direction is SELL:
                yield _signal(ctx, SetupKind.SWEEP_CHOCH, SELL, ctx.candle.c, sweep.price * 1.0002,
                              'EQH sweep', 'CHoCH down')
            else:
                yield _signal(ctx, SetupKind.SWEEP_CHOCH, BUY, ctx.candle.c, sweep.price * 0.9998,
                              'EQL sweep', 'CHoCH up')


def trend_pullback(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    fast, slow = ctx.ema_fast, ctx.ema_slow
    if not ctx.session_allowed or fast is None or slow is None:
        return
    candle, prev = ctx.candle, ctx.prev
    separation = abs(fast - slow) / max(abs(slow), 1e-6) if abs(slow) > 0 else 0.0
    if separation < 0.001:
        return
    if (fast > slow and ctx.bias_label is BiasLabel.BULLISH and candle.c >= fast
            and candle.l <= fast * 1.0005 and ctx.bullish_confirm and ctx.is_kill_zone
            and ctx.shift_is(Polarity.BULLISH)):
        stop = min(fast, candle.l, prev.l)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.TREND_PULLBACK, BUY, candle.c, stop,
                          'EMA stack up', 'Pullback to EMA')
    if (fast < slow and ctx.bias_label is BiasLabel.BEARISH and candle.c <= fast
            and candle.h >= fast * 0.9995 and ctx.bearish_confirm and ctx.is_kill_zone
            and ctx.shift_is(Polarity.BEARISH)):
        stop = max(fast, candle.h, prev.h)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.TREND_PULLBACK, SELL, candle.c, stop,
                          'EMA stack down', 'Pullback to EMA')


def kill_zone_liquidity_entry(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (ctx.session_allowed and ctx.is_london_or_ny and state.bars_since_signal(ctx.index) > 6):
        return
    candle, asia = ctx.candle, state.asia_range
    for direction in (BUY, SELL):
        buying = direction is BUY
        zone = ctx.institutional_buy_zone if buying else ctx.institutional_sell_zone
        if not (zone and ctx.confirms(direction) and ctx.bias_label is _BIAS[direction]
                and ctx.htf_zone(direction) and ctx.shift_is(direction.polarity)
                and ctx.is_kill_zone and _clear(ctx, market, direction, 3)):
            continue
        wick = candle.l if buying else candle.h
        asia_level = (asia.low if buying else asia.high) if asia is not None else wick
        stop = _extreme(direction, asia_level, _swing_stop(ctx, market, direction, wick), wick)
        yield _signal(ctx, SetupKind.KILL_ZONE_LIQUIDITY, direction, candle.c, stop,
                      'Institutional discount' if buying else 'Institutional premium',
                      _session(ctx))


def power_of_three_kill_zone(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    pattern = ctx.power_of_three
    if not ctx.session_allowed or pattern is None:
        return
    direction = pattern.direction
    buying = direction is BUY
    zone = (ctx.institutional_buy_zone or ctx.htf_buy_zone) if buying else \
        (ctx.institutional_sell_zone or ctx.htf_sell_zone)
    if not (zone and ctx.is_kill_zone and ctx.shift_is(direction.polarity)
            and _clear(ctx, market, direction, 3, entry=pattern.entry)):
        return
    stop = _extreme(direction, pattern.anchor, ctx.candle.l if buying else ctx.candle.h)
    if (pattern.entry - stop) * direction.sign > 0:
        yield _signal(ctx, SetupKind.POWER_OF_THREE, direction, pattern.entry, stop,
                      pattern.reason, _session(ctx))


def institutional_kill_zone(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """
    Kill-zone tap against the opposite side of the dealing range: sells
    need a discount context, buys a premium one.
    """
    if not (ctx.session_allowed and ctx.is_london_or_ny and ctx.kill_zone):
        return
    candle, prev, i = ctx.candle, ctx.prev, ctx.index
    window = market.candles[max(0, i - 6):i + 1]
    if (ctx.institutional_sell_zone and ctx.bearish_confirm and ctx.bias_label is BiasLabel.BEARISH
            and ctx.discount_context and ctx.shift_is(Polarity.BEARISH)
            and _clear(ctx, market, SELL, 3)):
        stop = max(candle.h, max(c.h for c in window), prev.h)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.INSTITUTIONAL_KILL_ZONE, SELL, candle.c, stop,
                          'Premium kill-zone tap', _session(ctx))
    if (ctx.institutional_buy_zone and ctx.bullish_confirm and ctx.bias_label is BiasLabel.BULLISH
            and ctx.premium_context and ctx.shift_is(Polarity.BULLISH)
            and _clear(ctx, market, BUY, 3)):
        stop = min(candle.l, min(c.l for c in window), prev.l)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.INSTITUTIONAL_KILL_ZONE, BUY, candle.c, stop,
                          'Discount kill-zone tap', _session(ctx))


def asia_sweep_reversal(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    asia = state.asia_range
    if not (ctx.session_allowed and ctx.is_london_or_ny and ctx.kill_zone and state.asia_active):
        return
    if asia.last_sweep_bar is not None and ctx.index - asia.last_sweep_bar <= 8:
        return
    candle, tolerance = ctx.candle, 0.0002
    if (candle.h >= asia.high * (1 + tolerance) and candle.c < asia.high
            and ctx.bearish_confirm and ctx.htf_sell_zone):
        stop = max(candle.h, asia.high)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.ASIA_SWEEP_REVERSAL, SELL, candle.c, stop,
                          'London/NY sweep of Asia high', 'Kill zone rejection')
            asia.last_sweep_bar = ctx.index
    if (candle.l <= asia.low * (1 - tolerance) and candle.c > asia.low
            and ctx.bullish_confirm and ctx.htf_buy_zone):
        stop = min(candle.l, asia.low)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.ASIA_SWEEP_REVERSAL, BUY, candle.c, stop,
                          'London/NY sweep of Asia low', 'Kill zone rejection')
            asia.last_sweep_bar = ctx.index


def breaker_fvg(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (market.breakers and market.gaps and ctx.session_allowed):
        return
    breaker = market.recent_breaker(ctx.candle.t)
    gap = market.recent_gap(ctx.candle.t)
    if breaker is None or gap is None or not _touches(ctx.candle, gap.lower, gap.upper):
        return
    for direction in (BUY, SELL):
        if (breaker.type is direction.polarity and ctx.bias_label is _BIAS[direction]
                and ctx.confirms(direction) and ctx.htf_zone(direction)):
            stop = breaker.low if direction is BUY else breaker.high
            if (gap.midpoint - stop) * direction.sign > 0:
                yield _signal(ctx, SetupKind.BREAKER_FVG, direction, gap.midpoint, stop,
                              'Bull breaker' if direction is BUY else 'Bear breaker',
                              'FVG return', 'With bias')


def fvg_fill_rejection(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """
    Full fill of a gap followed by rejection. A fill that closes through the
    gap also registers an inversion level for the next six hours.
    """
    candle = ctx.candle
    filled = next((g for g in reversed(market.gaps)
                   if g.end_time <= candle.t and candle.l <= g.lower and candle.h >= g.upper), None)
    if filled is None or not market.swings or not ctx.session_allowed:
        return
    if filled.type is Polarity.BULLISH and ctx.bullish_confirm and ctx.htf_buy_zone:
        stop = min(_swing_stop(ctx, market, BUY, candle.l), candle.l)
        yield _signal(ctx, SetupKind.FVG_FILL_REJECTION, BUY, candle.c, stop,
                      'Bullish FVG fill', 'Rejection wick')
    if filled.type is Polarity.BEARISH and ctx.bearish_confirm and ctx.htf_sell_zone:
        stop = max(_swing_stop(ctx, market, SELL, candle.h), candle.h)
        yield _signal(ctx, SetupKind.FVG_FILL_REJECTION, SELL, candle.c, stop,
                      'Bearish FVG fill', 'Rejection wick')

    expiry = candle.t + 6 * HOUR_MS
    if filled.type is Polarity.BULLISH and candle.c < filled.lower:
        state.inversion_gaps.append(InversionGap(Polarity.BEARISH, filled.midpoint, expiry))
    if filled.type is Polarity.BEARISH and candle.c > filled.upper:
        state.inversion_gaps.append(InversionGap(Polarity.BULLISH, filled.midpoint, expiry))


def inversion_fvg(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    candle = ctx.candle
    state.inversion_gaps = [g for g in state.inversion_gaps if candle.t < g.expiry]
    if not (state.inversion_gaps and ctx.session_allowed):
        return
    tolerance = max(ctx.atr * 0.5, abs(candle.c) * 0.0004)
    inversion = next((g for g in reversed(state.inversion_gaps)
                      if abs(candle.c - g.level) <= tolerance), None)
    if inversion is None:
        return

    window = 3 * HOUR_MS
    recent_sweep = next((s for s in reversed(market.sweeps)
                         if s.time <= candle.t and candle.t - s.time <= window), None)
    tapped_ob = next((b for b in market.blocks if b.end_time <= candle.t
                      and candle.t - b.end_time <= window
                      and _touches(candle, b.low, b.high)), None)

    direction = BUY if inversion.type is Polarity.BULLISH else SELL
    if not (ctx.confirms(direction) and ctx.htf_zone(direction)):
        return
    confluence = ((recent_sweep is not None and recent_sweep.direction is _SWEEP_INTO[direction])
                  or (tapped_ob is not None and tapped_ob.type is inversion.type))
    if not confluence:
        state.inversion_gaps.remove(inversion)
        return
    if direction is BUY:
        stop = min(candle.l, inversion.level - tolerance)
        label = 'Inversion FVG support'
    else:
        stop = max(candle.h, inversion.level + tolerance)
        label = 'Inversion FVG resistance'
    yield _signal(ctx, SetupKind.INVERSION_FVG, direction, candle.c, stop,
                  label, f"Level {inversion.level:.2f}")
    state.inversion_gaps.remove(inversion)


def breaker_choch(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (market.breakers and market.swings and ctx.session_allowed):
        return
    breaker, shift = market.recent_breaker(ctx.candle.t), ctx.shift
    if breaker is None or shift is None or shift.time < breaker.start_time:
        return
    for direction in (BUY, SELL):
        if (breaker.type is direction.polarity and shift.direction is direction.polarity
                and ctx.confirms(direction) and ctx.htf_zone(direction)):
            stop = breaker.low if direction is BUY else breaker.high
            if (ctx.candle.c - stop) * direction.sign > 0:
                yield _signal(ctx, SetupKind.BREAKER_CHOCH, direction, ctx.candle.c, stop,
                              *(('Bull breaker', 'CHoCH up') if direction is BUY
                                else ('Bear breaker', 'CHoCH down')))


def breaker_sweep(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (market.breakers and market.sweeps and ctx.session_allowed):
        return
    breaker, sweep = market.recent_breaker(ctx.candle.t), ctx.last_sweep
    if breaker is None or sweep is None or sweep.time < breaker.start_time:
        return
    if not _touches(ctx.candle, breaker.low, breaker.high):
        return
    for direction in (BUY, SELL):
        if (breaker.type is direction.polarity and sweep.direction is _SWEEP_INTO[direction]
                and ctx.confirms(direction) and ctx.htf_zone(direction)):
            stop = breaker.low if direction is BUY else breaker.high
            yield _signal(ctx, SetupKind.BREAKER_SWEEP, direction, ctx.candle.c, stop,
                          *(('Bull breaker', 'Liquidity sweep of lows') if direction is BUY
                            else ('Bear breaker', 'Liquidity sweep of highs')))


def judas_swing(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """New York open raid of the prior day's high or low."""
    htf, candle = market.htf, ctx.candle
    if htf is None or not is_new_york(ctx.session.label) or not 12 <= ctx.hour <= 16:
        return
    pdh, pdl = htf.prev_day_high, htf.prev_day_low
    if pdh and candle.h > pdh and ctx.bearish_confirm and ctx.htf_sell_zone:
        yield _signal(ctx, SetupKind.JUDAS_SWING, SELL, candle.c, max(candle.h, pdh),
                      'NY open sweep of PDH', 'Reversal candle')
    if pdl and candle.l < pdl and ctx.bullish_confirm and ctx.htf_buy_zone:
        yield _signal(ctx, SetupKind.JUDAS_SWING, BUY, candle.c, min(candle.l, pdl),
                      'NY open sweep of PDL', 'Reversal candle')


def silver_bullet(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (ctx.silver_bullet_window and market.sweeps and market.gaps):
        return
    candle, sweep = ctx.candle, ctx.last_sweep
    gap = market.recent_gap(candle.t)
    if sweep is None or gap is None or not _touches(candle, gap.lower, gap.upper):
        return
    for direction in (BUY, SELL):
        if (sweep.direction is _SWEEP_INTO[direction] and gap.type is direction.polarity
                and ctx.confirms(direction) and ctx.htf_zone(direction)):
            buying = direction is BUY
            stop = _extreme(direction, sweep.price, candle.l if buying else candle.h)
            yield _signal(ctx, SetupKind.SILVER_BULLET, direction, candle.c, stop,
                          'NY silver window',
                          'Sweep of lows' if buying else 'Sweep of highs', 'FVG return')


def turtle_soup(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """Failed breakout of the prior 20-day range while the market is ranging."""
    if not ctx.session_allowed:
        return
    prior = market.prior_days_range(ctx.day_key)
    if prior is None:
        return
    high, low = prior
    if high <= low:
        return

    i = ctx.index
    atr_window = market.atr[max(0, i - 120):i]
    avg_atr = sum(atr_window) / len(atr_window) if atr_window else ctx.atr
    fast, slow = ctx.ema_fast, ctx.ema_slow
    strong_trend = fast is not None and slow is not None and abs(fast - slow) > abs(slow) * 0.0025
    if avg_atr <= 0 or high - low > avg_atr * 8 or strong_trend:
        return

    candle = ctx.candle
    if candle.h > high and candle.c < high and not ctx.up_candle:
        yield _signal(ctx, SetupKind.TURTLE_SOUP, SELL, min(candle.c, high), max(candle.h, high),
                      '20-day high sweep', 'Close back below range')
    elif candle.l < low and candle.c > low and ctx.up_candle:
        yield _signal(ctx, SetupKind.TURTLE_SOUP, BUY, max(candle.c, low), min(candle.l, low),
                      '20-day low sweep', 'Close back above range')


def liquidity_void_return(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    """
    Records displacement bodies (over 1.5x the 20-bar average range) as
    liquidity voids, then trades a return to the midpoint of the latest
    void formed within 12 hours.
    """
    candle, i = ctx.candle, ctx.index
    window = market.candles[max(0, i - 20):i]
    avg_range = sum(c.range for c in window) / len(window) if window else candle.range
    if candle.body > avg_range * 1.5:
        top, bottom = max(candle.o, candle.c), min(candle.o, candle.c)
        state.liquidity_voids.append(LiquidityVoid(
            SweepDirection.UP if candle.c > candle.o else SweepDirection.DOWN,
            (top + bottom) / 2, top, bottom, candle.t,
        ))

    if not state.liquidity_voids:
        return
    void = state.liquidity_voids[-1]
    if candle.t - void.time > 12 * HOUR_MS or not ctx.session_allowed:
        return
    mid = void.midpoint
    if (void.direction is SweepDirection.UP and candle.l <= mid < candle.c
            and ctx.bias_label is BiasLabel.BULLISH and ctx.bullish_confirm):
        yield _signal(ctx, SetupKind.LIQUIDITY_VOID_RETURN, BUY, mid, min(void.bottom, candle.l),
                      'Bullish displacement', 'Return into imbalance')
    if (void.direction is SweepDirection.DOWN and candle.c < mid <= candle.h
            and ctx.bias_label is BiasLabel.BEARISH and ctx.bearish_confirm):
        yield _signal(ctx, SetupKind.LIQUIDITY_VOID_RETURN, SELL, mid, max(void.top, candle.h),
                      'Bearish displacement', 'Return into imbalance')


def asian_range_breakout(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    asia = state.asia_range
    if not (state.asia_active and ctx.session_allowed):
        return
    candle = ctx.candle

    def rested() -> bool:
        return asia.last_breakout_time is None or candle.t - asia.last_breakout_time > HOUR_MS

    if candle.l < asia.low < candle.c and rested():
        yield _signal(ctx, SetupKind.ASIAN_RANGE_BREAKOUT, BUY, candle.c, min(candle.l, asia.low),
                      'London/NY sweep Asia low', 'Reversal candle')
        asia.last_breakout_time = candle.t
    if candle.c < asia.high < candle.h and rested():
        yield _signal(ctx, SetupKind.ASIAN_RANGE_BREAKOUT, SELL, candle.c, max(candle.h, asia.high),
                      'London/NY sweep Asia high', 'Reversal candle')
        asia.last_breakout_time = candle.t


def momentum_continuation(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (ctx.session_allowed and ctx.atr > 0.00001):
        return
    candle, prev = ctx.candle, ctx.prev
    if abs(candle.c - prev.c) < ctx.atr * 0.8:
        return
    for direction in (BUY, SELL):
        if ctx.bias_label is _BIAS[direction] and ctx.confirms(direction):
            buying = direction is BUY
            stop = min(prev.l, candle.l) if buying else max(prev.h, candle.h)
            if (candle.c - stop) * direction.sign > 0:
                yield _signal(ctx, SetupKind.MOMENTUM_CONTINUATION, direction, candle.c, stop,
                              'Strong impulsive candle', _session(ctx))


def mean_reversion_fade(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not (ctx.session_allowed and ctx.atr > 0.00001):
        return
    candle, prev, htf = ctx.candle, ctx.prev, market.htf
    in_zone = (
        (htf is not None and bool(htf.prev_day_high) and candle.h >= htf.prev_day_high)
        or (htf is not None and bool(htf.prev_day_low) and candle.l <= htf.prev_day_low)
        or ctx.near_pd_high or ctx.near_pd_low
    )
    if not in_zone:
        return
    if not ctx.up_candle and ctx.bias_label is not BiasLabel.BEARISH:
        stop = max(candle.h, prev.h)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.MEAN_REVERSION_FADE, SELL, candle.c, stop,
                          'Rejecting HTF premium', _session(ctx))
    if ctx.up_candle and ctx.bias_label is not BiasLabel.BULLISH:
        stop = min(candle.l, prev.l)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.MEAN_REVERSION_FADE, BUY, candle.c, stop,
                          'Rejecting HTF discount', _session(ctx))


def range_breakout(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not ctx.session_allowed:
        return
    i = ctx.index
    window = market.candles[max(0, i - 10):i]
    if len(window) < 4:
        return
    candle, prev = ctx.candle, ctx.prev
    high, low = max(c.h for c in window), min(c.l for c in window)
    if candle.c > high and ctx.bias_label is not BiasLabel.BEARISH and ctx.bullish_confirm:
        stop = min(low, prev.l)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.RANGE_BREAKOUT, BUY, candle.c, stop,
                          'Breakout of recent range', _session(ctx))
    if candle.c < low and ctx.bias_label is not BiasLabel.BULLISH and ctx.bearish_confirm:
        stop = max(high, prev.h)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.RANGE_BREAKOUT, SELL, candle.c, stop,
                          'Breakout of recent range', _session(ctx))


def engulfing_shift(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not ctx.session_allowed:
        return
    candle, prev = ctx.candle, ctx.prev
    engulfs = {
        BUY: (ctx.up_candle and candle.o <= prev.c and candle.c >= prev.h
              and candle.c - candle.o > prev.body),
        SELL: (not ctx.up_candle and candle.o >= prev.c and candle.c <= prev.l
               and candle.o - candle.c > prev.body),
    }
    for direction in (BUY, SELL):
        if not (engulfs[direction] and ctx.bias_label is _BIAS[direction] and ctx.is_kill_zone
                and ctx.shift_is(direction.polarity) and _clear(ctx, market, direction, 2)):
            continue
        buying = direction is BUY
        stop = min(prev.l, candle.l) if buying else max(prev.h, candle.h)
        if (candle.c - stop) * direction.sign > 0:
            yield _signal(ctx, SetupKind.ENGULFING_SHIFT, direction, candle.c, stop,
                          'Bullish engulfing' if buying else 'Bearish engulfing', _session(ctx))


def pullback_reentry(ctx: BarContext, market: MarketInputs, state: ScanState) -> Iterator[Signal]:
    if not ctx.session_allowed:
        return
    candle, prev = ctx.candle, ctx.prev
    if ctx.bias_label is BiasLabel.BULLISH and candle.l <= prev.l and ctx.bullish_confirm:
        stop = min(candle.l, prev.l)
        if candle.c - stop > 0:
            yield _signal(ctx, SetupKind.PULLBACK_REENTRY, BUY, candle.c, stop,
                          'Bias bullish', 'Pullback rejection')
    if ctx.bias_label is BiasLabel.BEARISH and candle.h >= prev.h and ctx.bearish_confirm:
        stop = max(candle.h, prev.h)
        if stop - candle.c > 0:
            yield _signal(ctx, SetupKind.PULLBACK_REENTRY, SELL, candle.c, stop,
                          'Bias bearish', 'Pullback rejection')


# Evaluation order on every bar
RULES: List[Tuple[SetupKind, Rule]] = [
    (SetupKind.BIAS_OB_FVG_SESSION, bias_ob_fvg_session),
    (SetupKind.CHOCH_FVG_OTE, choch_fvg_ote),
    (SetupKind.PD_DISCOUNT, pd_array_discount),
    (SetupKind.PD_PREMIUM, pd_array_premium),
    (SetupKind.SWEEP_SHIFT, sweep_shift),
    (SetupKind.BREAKER_RETEST, breaker_retest),
    (SetupKind.SWEEP_CHOCH, sweep_choch),
    (SetupKind.TREND_PULLBACK, trend_pullback),
    (SetupKind.KILL_ZONE_LIQUIDITY, kill_zone_liquidity_entry),
    (SetupKind.POWER_OF_THREE, power_of_three_kill_zone),
    (SetupKind.INSTITUTIONAL_KILL_ZONE, institutional_kill_zone),
    (SetupKind.ASIA_SWEEP_REVERSAL, asia_sweep_reversal),
    (SetupKind.BREAKER_FVG, breaker_fvg),
    (SetupKind.FVG_FILL_REJECTION, fvg_fill_rejection),
    (SetupKind.INVERSION_FVG, inversion_fvg),
    (SetupKind.BREAKER_CHOCH, breaker_choch),
    (SetupKind.BREAKER_SWEEP, breaker_sweep),
    (SetupKind.JUDAS_SWING, judas_swing),
    (SetupKind.SILVER_BULLET, silver_bullet),
    (SetupKind.TURTLE_SOUP, turtle_soup),
    (SetupKind.LIQUIDITY_VOID_RETURN, liquidity_void_return),
    (SetupKind.ASIAN_RANGE_BREAKOUT, asian_range_breakout),
    (SetupKind.MOMENTUM_CONTINUATION, momentum_continuation),
    (SetupKind.MEAN_REVERSION_FADE, mean_reversion_fade),
    (SetupKind.RANGE_BREAKOUT, range_breakout),
    (SetupKind.ENGULFING_SHIFT, engulfing_shift),
    (SetupKind.PULLBACK_REENTRY, pullback_reentry),
]


def setup_catalog() -> List[Dict]:
    """Every known setup with its profile, in evaluation order."""
    order = [kind for kind, _ in RULES] + [SetupKind.MODEL_2022]
    catalog = []
    for kind in order:
        profile = SETUP_PROFILES.get(kind, DEFAULT_PROFILE)
        catalog.append({
            'name': kind.value,
            'priority': profile.priority,
            'tier_one': profile.tier_one,
            'risk_cap': profile.risk_cap,
            'low_confluence': profile.low_confluence,
            'disabled': profile.disabled,
        })
    return catalog
