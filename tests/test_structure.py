"""
Tests for bias, swings and structure shifts
"""

import numpy as np
import pytest

from factories import DAY, HOUR, MONDAY_MS, make_candle, random_walk_candles
from ict_engine.models import BiasLabel, Polarity, ShiftLabel, StructureShiftOptions, SwingType
from ict_engine.structure import (
    compute_bias, compute_weekly_bias, detect_structure_shifts, detect_swings, find_recent_swing,
)


class TestBias:

    def test_four_candles_is_neutral(self):
        candles = random_walk_candles(4)
        bias = compute_bias(candles)
        assert bias.label is BiasLabel.NEUTRAL
        assert bias.reason == 'Not enough data to compute bias'

    def test_empty_input_never_raises(self):
        assert compute_bias([]).label is BiasLabel.NEUTRAL
        assert compute_weekly_bias([]).label is BiasLabel.NEUTRAL

    def test_single_day_waits_for_second_session(self):
        candles = random_walk_candles(20, interval_ms=HOUR // 4)
        assert compute_bias(candles).reason == 'Waiting for at least two sessions'

    def test_bullish_day_sweeping_prior_high(self):
        prev = [make_candle(MONDAY_MS + i * HOUR, 100, 101, 99, 100) for i in range(6)]
        today = [
            make_candle(MONDAY_MS + DAY, 100, 100.5, 99.5, 100.2),
            make_candle(MONDAY_MS + DAY + HOUR, 100.2, 101.5, 100.1, 101.2),
        ]
        bias = compute_bias(prev + today)
        assert bias.label is BiasLabel.BULLISH

    def test_bearish_day_sweeping_prior_low(self):
        prev = [make_candle(MONDAY_MS + i * HOUR, 100, 101, 99, 100) for i in range(6)]
        today = [
            make_candle(MONDAY_MS + DAY, 100, 100.2, 99.5, 99.8),
            make_candle(MONDAY_MS + DAY + HOUR, 99.8, 99.9, 98.5, 98.7),
        ]
        assert compute_bias(prev + today).label is BiasLabel.BEARISH


class TestSwings:

    @pytest.mark.parametrize('lookback', [1, 2, 3, 5])
    def test_swing_is_window_extreme(self, lookback):
        candles = random_walk_candles(300, seed=lookback)
        highs = np.array([c.h for c in candles])
        lows = np.array([c.l for c in candles])

        swings = detect_swings(candles, lookback)
        assert swings
        for swing in swings:
            assert lookback <= swing.index < len(candles) - lookback
            window = slice(swing.index - lookback, swing.index + lookback + 1)
            if swing.type is SwingType.HIGH:
                assert swing.price == highs[window].max()
            else:
                assert swing.price == lows[window].min()

    def test_too_few_candles(self):
        assert detect_swings(random_walk_candles(4), 2) == []

    def test_find_recent_swing(self):
        candles = random_walk_candles(200)
        swings = detect_swings(candles, 2)
        lows = [s for s in swings if s.type is SwingType.LOW]
        cutoff = lows[3].time
        assert find_recent_swing(swings, SwingType.LOW, cutoff) == lows[3].price
        assert find_recent_swing(swings, SwingType.LOW, candles[0].t) is None
        assert find_recent_swing(None, SwingType.HIGH, cutoff) is None


class TestStructureShifts:

    def test_first_is_bos_and_directions_alternate(self, sample_candles):
        swings = detect_swings(sample_candles, 2)
        shifts = detect_structure_shifts(sample_candles, swings, 0,
                                         StructureShiftOptions(2, 4, 0.00005))
        assert shifts
        assert len(shifts) <= 30
        if len(shifts) < 30:
            assert shifts[0].label is ShiftLabel.BOS
        for prev, cur in zip(shifts, shifts[1:]):
            assert cur.direction is not prev.direction
            assert cur.label is ShiftLabel.CHOCH

    def test_break_above_swing_high(self):
        t = MONDAY_MS
        bars = [(10, 10.5, 9.5, 10), (10, 11, 9.8, 10.2), (10.2, 12, 10, 11),
                (11, 11.5, 10.2, 10.5), (10.5, 10.8, 9, 9.5), (9.5, 10, 9.2, 9.8),
                (9.8, 10.4, 9.4, 10.1), (10.1, 13, 10, 12.8)]
        candles = [make_candle(t + i * HOUR, *b) for i, b in enumerate(bars)]
        swings = detect_swings(candles, 1)
        shifts = detect_structure_shifts(candles, swings, 0, StructureShiftOptions(1, 1, 0.0))

        assert shifts[0].label is ShiftLabel.BOS
        assert shifts[-1].direction is Polarity.BULLISH
        assert shifts[-1].price == 12

    def test_needs_two_swings(self):
        candles = random_walk_candles(10)
        assert detect_structure_shifts(candles, [], 0) == []
        assert detect_structure_shifts([], detect_swings(candles, 1), 0) == []


class TestWeeklyBias:

    def _weeks(self, second_week):
        first = [make_candle(MONDAY_MS + d * DAY, 100, 101, 99, 100) for d in range(6)]
        second = [make_candle(MONDAY_MS + (7 + d) * DAY, *row) for d, row in enumerate(second_week)]
        return first + second

    def test_close_above_open_taking_prior_high(self):
        rising = [(100, 100.5 + d * 0.2, 99.5, 100.2 + d * 0.2) for d in range(6)]
        bias = compute_weekly_bias(self._weeks(rising))
        assert bias.label is BiasLabel.BULLISH

    def test_close_below_open_taking_prior_low(self):
        falling = [(100, 100.5, 99.5 - d * 0.2, 99.8 - d * 0.2) for d in range(6)]
        assert compute_weekly_bias(self._weeks(falling)).label is BiasLabel.BEARISH

    def test_inside_week_is_neutral(self):
        inside = [(100, 100.5, 99.5, 100.1) for _ in range(6)]
        assert compute_weekly_bias(self._weeks(inside)).label is BiasLabel.NEUTRAL

    def test_single_week(self):
        candles = [make_candle(MONDAY_MS + i * HOUR, 100, 101, 99, 100) for i in range(20)]
        assert compute_weekly_bias(candles).reason == 'Waiting for at least two weeks'
