"""
Market analysis facade.

One-way pipeline from candles to a ``MarketReading``: structure, zones,
liquidity, engine signals, Model 2022 signals and the readiness scanner.
"""

import logging
import time
from typing import Optional, Sequence

from .model2022 import build_model2022_state, to_signals
from .models import Candle, MarketReading, SessionZone, SetupWeights, StructureShiftOptions
from .scanner import evaluate_scanner
from .signal_engine import EngineOptions, SignalEngine
from .structure import compute_bias, compute_weekly_bias, detect_structure_shifts, detect_swings
from .zones import (
    compute_htf_levels, compute_premium_discount_range, detect_breaker_blocks,
    detect_equal_highs_lows, detect_fvg, detect_liquidity_sweeps, detect_order_blocks,
)

logger = logging.getLogger(__name__)

DISPLAY_SHIFT_OPTIONS = StructureShiftOptions(min_swing_distance=2, min_spacing_bars=4, min_break_pct=0.00005)


def analyze(candles: Sequence[Candle],
            sessions: Optional[Sequence[SessionZone]] = None,
            weights: Optional[SetupWeights] = None,
            options: Optional[EngineOptions] = None,
            shift_options: Optional[StructureShiftOptions] = None,
            swing_lookback: int = 2) -> MarketReading:
    """
    Full reading of ``candles`` (ascending by time).

    Model 2022 signals are appended after the engine's admitted signals and
    the scanner scores the last signal of the combined list against the
    latest close.
    """
    started = time.perf_counter()
    candles = list(candles)

    bias = compute_bias(candles)
    weekly_bias = compute_weekly_bias(candles)
    swings = detect_swings(candles, swing_lookback)
    shifts = detect_structure_shifts(candles, swings, 0, shift_options or DISPLAY_SHIFT_OPTIONS)
    gaps = detect_fvg(candles)
    order_blocks = detect_order_blocks(candles)
    breakers = detect_breaker_blocks(order_blocks, candles)
    sweeps = detect_liquidity_sweeps(candles)
    equal_levels = detect_equal_highs_lows(candles)
    premium_discount = compute_premium_discount_range(candles)
    htf_levels = compute_htf_levels(candles)

    engine = SignalEngine(sessions, weights, options)
    signals = engine.detect(candles, bias, gaps, order_blocks, swings, sweeps,
                            breakers, premium_discount, htf_levels)

    model2022 = build_model2022_state(candles, swings, gaps, order_blocks, bias, shifts)
    signals = signals + to_signals(model2022.m15_signals)

    scanner = evaluate_scanner(
        signals[-1] if signals else None,
        bias,
        premium_discount,
        candles[-1].c if candles else None,
    )

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug(f"Analyzed {len(candles)} candles in {elapsed_ms:.1f}ms: "
                 f"{len(signals)} signals, bias {bias.label.value}")

    return MarketReading(
        bias=bias,
        weekly_bias=weekly_bias,
        swings=swings,
        structure_shifts=shifts,
        gaps=gaps,
        order_blocks=order_blocks,
        breaker_blocks=breakers,
        sweeps=sweeps,
        equal_levels=equal_levels,
        premium_discount=premium_discount,
        htf_levels=htf_levels,
        signals=signals,
        scanner=scanner,
        model2022=model2022,
    )
