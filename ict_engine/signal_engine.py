"""
Signal Engine
=============

Walks the candle series once, builds the bar context, runs every setup
rule and pushes each candidate through a single admission pipeline:

    1. session / bias defaults
    2. adaptive setup filter (outcome stats + clear path to target)
    3. session-open filter (optional)
    4. bias-flip freeze
    5. global cooldown (2 bars)
    6. one signal per bar
    7. disabled setups
    8. per-setup cooldown (5 bars)
    9. risk validation (floors, ATR caps)
   10. target ladder (TP1..TP4, minimum 1.25R)
   11. tier confluence
   12. direction-flip guard
   13. daily cap (12) and one tier-two signal per session
   14. position sizing

Admitted signals are final; nothing downstream re-filters them.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import (
    Bias, BiasLabel, BreakerBlock, Candle, Direction, Gap, HtfLevels,
    LiquiditySweep, OrderBlock, PremiumDiscountRange, SessionZone, SetupWeight,
    SetupWeights, Signal, Swing, SweepDirection,
)
from .scan_context import BarContext, MarketInputs, ScanState, detect_power_of_three
from .sessions import (
    DEFAULT_SESSION_ZONES, is_london_or_ny, is_new_york, is_within_kill_zone,
    resolve_session, respects_session_open,
)
from .setups import RULES, SetupKind, profile_for
from .timeutils import HOUR_MS, day_key, utc_hour
from .zones import has_clear_path

logger = logging.getLogger(__name__)

RR_TP1 = 1.5
RR_TP2 = 3.0
RR_TP3 = 4.5
RR_TP4 = 6.0
MIN_R_MULTIPLE = 1.25
SETUP_COOLDOWN = 5
GLOBAL_COOLDOWN = 2
MAX_SIGNALS_PER_BAR = 1
MAX_TRADES_PER_DAY = 12
BIAS_FLIP_COOLDOWN_MS = 3 * HOUR_MS


@dataclass
class EngineOptions:
    enforce_session_open_filter: bool = False
    ui_signal_limit: Optional[int] = None
    strict_sessions: bool = False
    include_choch_fvg_ote: bool = True


class SignalEngine:
    """Stateless between calls; every ``detect`` starts a fresh scan."""

    def __init__(self, sessions: Optional[Sequence[SessionZone]] = None,
                 weights: Optional[SetupWeights] = None,
                 options: Optional[EngineOptions] = None):
        self.sessions = list(sessions) if sessions else list(DEFAULT_SESSION_ZONES)
        self.weights = dict(weights or {})
        self.options = options or EngineOptions()

    def detect(self, candles: Sequence[Candle], bias: Bias,
               gaps: Sequence[Gap], blocks: Sequence[OrderBlock],
               swings: Optional[Sequence[Swing]] = None,
               sweeps: Optional[Sequence[LiquiditySweep]] = None,
               breakers: Optional[Sequence[BreakerBlock]] = None,
               premium_range: Optional[PremiumDiscountRange] = None,
               htf_levels: Optional[HtfLevels] = None) -> List[Signal]:
        if len(candles) < 2:
            return []

        market = MarketInputs(
            candles=list(candles), bias=bias, gaps=list(gaps), blocks=list(blocks),
            sessions=self.sessions, swings=list(swings or []), sweeps=list(sweeps or []),
            breakers=list(breakers or []), premium_range=premium_range, htf=htf_levels,
        )
        state = ScanState()
        rules = [(kind, rule) for kind, rule in RULES
                 if self.options.include_choch_fvg_ote or kind is not SetupKind.CHOCH_FVG_OTE]

        for i in range(1, len(market.candles)):
            ctx = self._advance(market, state, i)
            for kind, rule in rules:
                try:
                    for candidate in rule(ctx, market, state):
                        self._admit(candidate, ctx, market, state)
                except Exception as e:
                    logger.error(f"Setup rule '{kind.value}' failed at bar {i}: {e}", exc_info=True)

        signals = state.signals
        limit = self.options.ui_signal_limit
        if limit is not None and limit > 0:
            signals = signals[-limit:]
        logger.debug(f"Signal scan complete: {len(signals)} signals over {len(market.candles)} bars")
        return signals

    # ─────────────────────────────────────────────────────────────────────
    # Per-bar context
    # ─────────────────────────────────────────────────────────────────────

    def _advance(self, market: MarketInputs, state: ScanState, i: int) -> BarContext:
        """Derive the bar context and roll the bias-freeze and Asia-range state."""
        candles = market.candles
        candle, prev = candles[i], candles[i - 1]
        session = resolve_session(candle.t, self.sessions)
        hour = utc_hour(candle.t)
        day = day_key(candle.t)
        london_or_ny = is_london_or_ny(session.label)
        kill_zone = is_within_kill_zone(candle.t, session)

        body_mid = (candle.h + candle.l) / 2
        bullish_confirm = candle.c > candle.o and candle.c >= body_mid
        bearish_confirm = candle.c < candle.o and candle.c <= body_mid

        atr = market.atr[i]
        proximity = max(atr, abs(candle.c) * 0.0005)

        def near(level: Optional[float], scale: float = 1.0) -> bool:
            return level is not None and abs(candle.c - level) <= proximity * scale

        pd = market.pd_range(i)
        weekly = market.weekly_range
        htf = market.htf or HtfLevels()

        fast, slow = market.ema_fast[i], market.ema_slow[i]
        momentum = BiasLabel.NEUTRAL
        if fast is not None and slow is not None:
            if fast > slow * 1.0005:
                momentum = BiasLabel.BULLISH
            elif fast < slow * 0.9995:
                momentum = BiasLabel.BEARISH
        bias_label = market.bias.label if market.bias.label is not BiasLabel.NEUTRAL else momentum

        discount = pd is not None and pd.low <= candle.c <= pd.equilibrium
        premium = pd is not None and pd.equilibrium <= candle.c <= pd.high
        weekly_discount = weekly is not None and weekly.low <= candle.c <= weekly.equilibrium
        weekly_premium = weekly is not None and weekly.equilibrium <= candle.c <= weekly.high
        discount_context = discount or weekly_discount
        premium_context = premium or weekly_premium
        near_pd_low = pd is not None and near(pd.low)
        near_pd_high = pd is not None and near(pd.high)

        institutional_buy = (
            discount_context
            or (htf.prev_day_low is not None and candle.l <= htf.prev_day_low * 1.0005)
            or (htf.prev_week_low is not None and candle.l <= htf.prev_week_low * 1.0005)
        )
        institutional_sell = (
            premium_context
            or (htf.prev_day_high is not None and candle.h >= htf.prev_day_high * 0.9995)
            or (htf.prev_week_high is not None and candle.h >= htf.prev_week_high * 0.9995)
        )
        no_reference = pd is None and weekly is None
        htf_buy = (
            discount_context or near(htf.prev_day_low) or near(htf.prev_week_low) or near_pd_low
            or (weekly is not None and near(weekly.low, 1.5))
            or (no_reference and htf.prev_day_low is None and htf.prev_week_low is None)
        )
        htf_sell = (
            premium_context or near(htf.prev_day_high) or near(htf.prev_week_high) or near_pd_high
            or (weekly is not None and near(weekly.high, 1.5))
            or (no_reference and htf.prev_day_high is None and htf.prev_week_high is None)
        )

        in_window = max(0, session.start_hour - 1) <= hour < min(24, session.end_hour + 1)
        if self.options.strict_sessions:
            session_allowed = (kill_zone or in_window) if london_or_ny else True
        else:
            session_allowed = in_window or kill_zone or not london_or_ny

        if bias_label is BiasLabel.NEUTRAL:
            if institutional_buy and not institutional_sell:
                bias_label = BiasLabel.BULLISH
            elif institutional_sell and not institutional_buy:
                bias_label = BiasLabel.BEARISH

        power_of_three = detect_power_of_three(candles, i, session, state.asia_range)
        state.update_bias_freeze(day, bias_label, candle.t, BIAS_FLIP_COOLDOWN_MS)
        state.update_asia_range(session.label, day, candle)

        return BarContext(
            index=i, candle=candle, prev=prev, session=session, hour=hour, day_key=day,
            bias_label=bias_label, atr=atr, proximity=proximity,
            is_london_or_ny=london_or_ny, kill_zone=kill_zone, session_allowed=session_allowed,
            silver_bullet_window=is_new_york(session.label) and 17 <= hour <= 20,
            bullish_confirm=bullish_confirm, bearish_confirm=bearish_confirm,
            pd_range=pd, weekly_range=weekly,
            discount=discount, premium=premium,
            weekly_discount=weekly_discount, weekly_premium=weekly_premium,
            near_pd_high=near_pd_high, near_pd_low=near_pd_low,
            institutional_buy_zone=institutional_buy, institutional_sell_zone=institutional_sell,
            htf_buy_zone=htf_buy, htf_sell_zone=htf_sell,
            ema_fast=fast, ema_slow=slow,
            last_sweep=market.last_sweep(candle.t),
            power_of_three=power_of_three,
            day_levels=market.session_opens.get(day),
            shift=market.last_shift(i, atr),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Admission
    # ─────────────────────────────────────────────────────────────────────

    def _admit(self, signal: Signal, ctx: BarContext, market: MarketInputs, state: ScanState) -> bool:
        i = ctx.index
        direction = signal.direction
        if signal.session is None:
            signal.session = ctx.session.label
        if signal.bias is None:
            signal.bias = ctx.bias_label
        if not math.isfinite(signal.price):
            return False

        if signal.setup:
            risk = signal.risk
            approx_target = signal.tp1
            if approx_target is None and risk is not None and risk > 0:
                approx_target = signal.price + direction.sign * risk * 2
            multiplier = setup_filter(direction, signal.price, approx_target,
                                      self.weights.get(signal.setup), market.gaps, ctx.atr)
            if multiplier is None:
                return False
            base = 1.0 if signal.size_multiplier is None else signal.size_multiplier
            signal.size_multiplier = base * multiplier

        if (self.options.enforce_session_open_filter and ctx.day_levels is not None
                and not respects_session_open(direction, ctx.day_levels, ctx.candle.c)):
            return False
        if state.bias_freeze:
            return False
        if state.bars_since_signal(i) < GLOBAL_COOLDOWN:
            return False
        if state.signals_per_bar.get(i, 0) >= MAX_SIGNALS_PER_BAR:
            return False

        profile = profile_for(signal.setup)
        if profile.disabled:
            return False
        last = state.last_signal_index.get(signal.setup or 'default')
        if last is not None and i - last < SETUP_COOLDOWN:
            return False

        risk = signal.risk
        if risk is None or not math.isfinite(risk) or risk <= 0:
            return False
        atr = ctx.atr
        if not profile.tier_one and atr < abs(signal.price) * 0.0003:
            return False
        pip_floor = max(abs(signal.price) * 0.000004, 1e-5)
        atr_floor = min(atr * 0.02, abs(signal.price) * 0.0006) if atr > 0 else 0.0
        if risk < max(pip_floor, atr_floor):
            return False
        if atr > 0 and risk > atr * 4:
            return False
        if profile.risk_cap and atr > 0 and risk > atr * profile.risk_cap:
            return False

        apply_target_ladder(signal, risk, atr, profile.tier_one)

        if not self._has_confluence(signal, ctx, state, profile.tier_one, profile.low_confluence):
            return False

        flipped = (state.last_direction is not None and direction is not state.last_direction
                   and state.bars_since_signal(i) <= 1)
        if flipped and not (profile.priority > state.last_priority or ctx.fully_supports(direction)):
            return False

        if state.signals_per_day.get(ctx.day_key, 0) >= MAX_TRADES_PER_DAY:
            return False
        if not profile.tier_one:
            session_key = f"{ctx.day_key}-{ctx.session.label or 'session'}"
            if state.tier_two_sessions.get(session_key, 0) >= 1:
                return False
            state.tier_two_sessions[session_key] = state.tier_two_sessions.get(session_key, 0) + 1

        signal.size_multiplier = position_size(signal.price, atr, profile.tier_one) * (
            1.0 if signal.size_multiplier is None else signal.size_multiplier)
        state.record(signal, i, ctx.day_key, profile.priority)
        logger.debug(f"Admitted {signal.setup} {direction.value} @ {signal.price:.5f} (bar {i})")
        return True

    @staticmethod
    def _has_confluence(signal: Signal, ctx: BarContext, state: ScanState,
                        tier_one: bool, low_confluence: bool) -> bool:
        direction = signal.direction
        bias_support = ctx.bias_supports(direction)
        sweep = ctx.last_sweep
        sweep_confluence = sweep is not None and sweep.direction is (
            SweepDirection.DOWN if direction is Direction.BUY else SweepDirection.UP)
        asia_support = state.asia_active and bias_support

        if not tier_one:
            tier_two_allowed = ctx.is_london_or_ny and (ctx.is_kill_zone or bias_support)
            if not (tier_two_allowed and (sweep_confluence or asia_support)):
                return False
        elif ctx.is_london_or_ny and not sweep_confluence:
            return False
        if low_confluence and not bias_support:
            return False
        return True


def setup_filter(direction: Direction, entry: float, target: Optional[float],
                 stats: Optional[SetupWeight], gaps: Sequence[Gap],
                 fallback_atr: float) -> Optional[float]:
    """
    Adaptive filter from trade outcomes. Returns the size multiplier, or
    None when the setup is disallowed or an opposing gap blocks the path to
    the target (3 ATR when no target is known).
    """
    if stats is not None and not stats.allowed:
        return None
    projected = target
    if projected is None and fallback_atr > 0:
        projected = entry + direction.sign * fallback_atr * 3
    if projected is not None and not has_clear_path(entry, projected, direction, gaps):
        return None
    return stats.size_multiplier if stats is not None else 1.0


def apply_target_ladder(signal: Signal, risk: float, atr: float, tier_one: bool) -> None:
    """Fill missing TP1..TP4 and lift TP1 to at least 1.25R."""
    sign = signal.direction.sign
    tp1_mult = RR_TP1 if tier_one else max(2.0, RR_TP1)
    tp2_mult = RR_TP2 if tier_one else max(RR_TP2, tp1_mult + 1)
    tp3_mult = RR_TP3 if tier_one else max(RR_TP3, tp2_mult + 1.5)
    tp4_mult = RR_TP4 if tier_one else max(RR_TP4, tp3_mult + 1.5)

    if signal.tp1 is None:
        signal.tp1 = signal.price + sign * max(risk * tp1_mult, atr * 1.5)
    if signal.tp2 is None:
        signal.tp2 = signal.price + sign * max(risk * tp2_mult, atr * 2)
    if signal.tp3 is None:
        signal.tp3 = signal.price + sign * max(risk * tp3_mult, atr * 3)
    if signal.tp4 is None:
        signal.tp4 = signal.price + sign * max(risk * tp4_mult, atr * 4)

    if abs(signal.tp1 - signal.price) / risk < MIN_R_MULTIPLE:
        step = risk * MIN_R_MULTIPLE
        signal.tp1 = signal.price + sign * step


def position_size(price: float, atr: float, tier_one: bool) -> float:
    """ATR relative to 0.08% of price, clamped to [0.5, 2.5] ([0.75, 1.5] for tier one)."""
    baseline = max(abs(price) * 0.0008, 1e-6)
    raw = min(2.5, max(0.5, atr / baseline)) if atr > 0 else 1.0
    if tier_one:
        return max(0.75, min(1.5, raw))
    return raw


def detect_signals(candles: Sequence[Candle], bias: Bias,
                   gaps: Sequence[Gap], blocks: Sequence[OrderBlock],
                   sessions: Optional[Sequence[SessionZone]] = None,
                   swings: Optional[Sequence[Swing]] = None,
                   sweeps: Optional[Sequence[LiquiditySweep]] = None,
                   include_choch_fvg_ote: bool = True,
                   breakers: Optional[Sequence[BreakerBlock]] = None,
                   premium_range: Optional[PremiumDiscountRange] = None,
                   htf_levels: Optional[HtfLevels] = None,
                   weights: Optional[SetupWeights] = None,
                   options: Optional[EngineOptions] = None) -> List[Signal]:
    """Functional entry point around ``SignalEngine``."""
    opts = options or EngineOptions()
    if not include_choch_fvg_ote:
        opts = EngineOptions(opts.enforce_session_open_filter, opts.ui_signal_limit,
                             opts.strict_sessions, include_choch_fvg_ote=False)
    engine = SignalEngine(sessions, weights, opts)
    return engine.detect(candles, bias, gaps, blocks, swings, sweeps,
                         breakers, premium_range, htf_levels)
