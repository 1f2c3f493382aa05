"""
Tests for imbalance, order block, liquidity and range detectors
"""

import numpy as np
import pytest

from factories import DAY, HOUR, MONDAY_MS, make_candle, random_walk_candles
from ict_engine.models import (
    BreakerGrade, Direction, Gap, OrderBlock, Polarity, SweepDirection, SweepType,
)
from ict_engine.zones import (
    compute_anchored_pd_range, compute_htf_levels, compute_premium_discount_range,
    dedupe_blocks, detect_breaker_blocks, detect_equal_highs_lows, detect_fvg,
    detect_liquidity_sweeps, detect_order_blocks, detect_smt_signals, has_clear_path,
    weekly_pd_range,
)
from ict_engine.structure import detect_swings


def _bars(rows, start=MONDAY_MS, step=HOUR):
    return [make_candle(start + i * step, *row) for i, row in enumerate(rows)]


class TestFairValueGaps:

    def test_bullish_gap_scenario(self):
        a = make_candle(MONDAY_MS, 8.5, 9, 8, 8.8)
        b = make_candle(MONDAY_MS + HOUR, 9.7, 9.8, 9.6, 9.7)
        c = make_candle(MONDAY_MS + 2 * HOUR, 9.45, 9.5, 9.4, 9.45)

        gaps = detect_fvg([a, b, c])
        assert len(gaps) == 1
        gap = gaps[0]
        assert gap.type is Polarity.BULLISH
        assert gap.top == 9
        assert gap.bottom == 9.4
        assert gap.start_time == a.t
        assert gap.end_time == c.t

    def test_predicate_on_random_triples(self):
        np.random.seed(3)
        for _ in range(500):
            lows = np.random.uniform(0, 10, 3)
            highs = lows + np.random.uniform(0.1, 3, 3)
            a, b, c = [make_candle(MONDAY_MS + k * HOUR, lows[k], highs[k], lows[k], highs[k])
                       for k in range(3)]
            bullish = a.h < c.l and b.l > a.h and b.l > c.h
            bearish = a.l > c.h and b.h < a.l and b.h < c.l

            gaps = detect_fvg([a, b, c])
            assert [g.type for g in gaps] == (
                ([Polarity.BULLISH] if bullish else []) + ([Polarity.BEARISH] if bearish else [])
            )

    def test_short_input(self):
        assert detect_fvg([]) == []
        assert detect_fvg(random_walk_candles(2)) == []


class TestClearPath:

    def test_opposing_gap_blocks_buy(self):
        gaps = [Gap(0, 1, top=101.5, bottom=102, type=Polarity.BEARISH)]
        assert not has_clear_path(100, 105, Direction.BUY, gaps)
        assert has_clear_path(100, 101, Direction.BUY, gaps)

    def test_opposing_gap_blocks_sell(self):
        gaps = [Gap(0, 1, top=98, bottom=98.5, type=Polarity.BULLISH)]
        assert not has_clear_path(100, 95, Direction.SELL, gaps)
        assert has_clear_path(100, 99, Direction.SELL, gaps)

    def test_same_side_gap_is_ignored(self):
        gaps = [Gap(0, 1, top=101.5, bottom=102, type=Polarity.BULLISH)]
        assert has_clear_path(100, 105, Direction.BUY, gaps)

    def test_degenerate_inputs_are_clear(self):
        gaps = [Gap(0, 1, top=101.5, bottom=102, type=Polarity.BEARISH)]
        assert has_clear_path(float('nan'), 105, Direction.BUY, gaps)
        assert has_clear_path(100, 95, Direction.BUY, gaps)


class TestOrderBlocks:

    def test_down_candle_before_break_higher(self):
        candles = _bars([
            (10, 10.5, 9.5, 10.2),
            (10.2, 10.6, 9.9, 10.4),
            (10.4, 10.5, 9.8, 9.9),   # down candle
            (9.9, 11.2, 9.9, 11.0),   # breaks prior high 10.6
        ])
        blocks = detect_order_blocks(candles)
        bullish = [b for b in blocks if b.type is Polarity.BULLISH]
        assert len(bullish) == 1
        assert bullish[0].start_time == candles[2].t
        assert bullish[0].end_time == candles[3].t
        assert (bullish[0].high, bullish[0].low) == (10.5, 9.8)

    def test_dedupe(self):
        block = OrderBlock(1000, 2000, 10, 9, Polarity.BULLISH)
        near_copy = OrderBlock(1500, 2500, 10, 9, Polarity.BULLISH)
        other = OrderBlock(1000, 2000, 10, 9, Polarity.BEARISH)
        assert dedupe_blocks([block, near_copy, other]) == [block, other]

    def test_breaker_from_violated_bullish_block(self):
        ob = OrderBlock(MONDAY_MS, MONDAY_MS + HOUR, 10.5, 9.8, Polarity.BULLISH)
        candles = _bars([
            (10, 10.5, 9.8, 10.2),
            (10.2, 11, 10.1, 10.9),
            (10.9, 11, 9.2, 9.3),    # closes below the block low
        ])
        breakers = detect_breaker_blocks([ob], candles)
        assert len(breakers) == 1
        breaker = breakers[0]
        assert breaker.type is Polarity.BEARISH
        assert breaker.source_ob_type is Polarity.BULLISH
        assert breaker.end_time == candles[2].t
        # (9.8 - 9.3) / (11 - 9.2) ~ 0.28
        assert breaker.grade is BreakerGrade.WEAK

    def test_no_breaker_without_violation(self):
        ob = OrderBlock(MONDAY_MS, MONDAY_MS + HOUR, 10.5, 9.8, Polarity.BULLISH)
        candles = _bars([(10, 10.5, 9.8, 10.2), (10.2, 11, 10.1, 10.9)])
        assert detect_breaker_blocks([ob], candles) == []


class TestLiquidity:

    def test_equal_highs_then_sweep(self):
        candles = _bars([
            (99.5, 100.0, 99.0, 99.8),
            (99.8, 100.02, 99.2, 99.6),   # equal high with bar 0
            (99.6, 99.9, 99.1, 99.5),
            (99.5, 100.6, 99.4, 99.7),    # trades through the level
        ])
        levels = detect_equal_highs_lows(candles)
        assert any(level.kind == 'highs' for level in levels)

        sweeps = detect_liquidity_sweeps(candles)
        up = [s for s in sweeps if s.direction is SweepDirection.UP]
        assert len(up) == 1
        assert up[0].type is SweepType.EQH
        assert up[0].time == candles[3].t
        assert up[0].price == pytest.approx(100.01)

    def test_sweeps_on_short_input(self):
        assert detect_liquidity_sweeps(random_walk_candles(2)) == []


class TestRanges:

    def test_premium_discount_range(self):
        candles = _bars([(10, 12, 9, 11), (11, 14, 10, 13)])
        pd_range = compute_premium_discount_range(candles)
        assert (pd_range.high, pd_range.low, pd_range.equilibrium) == (14, 9, 11.5)
        assert compute_premium_discount_range(candles[:1]) is None

    def test_anchored_range_uses_latest_swings(self, sample_candles):
        swings = detect_swings(sample_candles, 2)
        pd_range = compute_anchored_pd_range(sample_candles, swings, len(sample_candles) - 1)
        assert pd_range is not None
        assert pd_range.low < pd_range.equilibrium < pd_range.high
        assert compute_anchored_pd_range(sample_candles, swings, -1) is None

    def test_htf_levels(self):
        day_one = [make_candle(MONDAY_MS + i * HOUR, 100, 101 + i * 0.1, 99, 100) for i in range(4)]
        day_two = [make_candle(MONDAY_MS + DAY + i * HOUR, 100, 100.5, 98.5, 100) for i in range(4)]
        htf = compute_htf_levels(day_one + day_two)

        assert htf.prev_day_high == pytest.approx(101.3)
        assert htf.prev_day_low == 99
        # both days sit in the same ISO week
        assert htf.prev_week_high is None
        assert htf.week_open == 100
        assert weekly_pd_range(htf) is None

    def test_htf_levels_empty(self):
        htf = compute_htf_levels([])
        assert htf.prev_day_high is None and htf.week_open is None


class TestSmt:

    def test_divergent_high_and_low(self):
        primary = _bars([(10, 11, 9, 10), (10, 11.5, 9.5, 11), (11, 11.2, 8.5, 9)])
        secondary = _bars([(20, 21, 19, 20), (20, 20.8, 19.5, 20.5), (20.5, 20.7, 19.6, 20)])
        signals = detect_smt_signals(primary, secondary)

        assert [(s.time, s.type) for s in signals] == [
            (primary[1].t, Direction.SELL),
            (primary[2].t, Direction.BUY),
        ]

    def test_unmatched_timestamps_are_skipped(self):
        primary = _bars([(10, 11, 9, 10), (10, 11.5, 9.5, 11)])
        secondary = _bars([(20, 21, 19, 20), (20, 20.8, 19.5, 20.5)], start=MONDAY_MS + DAY)
        assert detect_smt_signals(primary, secondary) == []
        assert detect_smt_signals(primary, []) == []
