"""
Tests for the signal engine admission pipeline
"""

import logging

import pytest

from factories import random_walk_candles
from ict_engine import signal_engine
from ict_engine.models import (
    Bias, BiasLabel, Direction, Gap, Polarity, SessionZone, SetupWeight, Signal,
)
from ict_engine.scan_context import ScanState
from ict_engine.setups import SetupKind, profile_for, setup_catalog
from ict_engine.signal_engine import (
    EngineOptions, SignalEngine, apply_target_ladder, detect_signals, position_size, setup_filter,
)
from ict_engine.structure import compute_bias, detect_swings
from ict_engine.timeutils import HOUR_MS, day_key
from ict_engine.zones import (
    compute_htf_levels, compute_premium_discount_range, detect_breaker_blocks, detect_fvg,
    detect_liquidity_sweeps, detect_order_blocks,
)

BULLISH = Bias(BiasLabel.BULLISH, 'test')
# one all-day session outside London/NY keeps tier-one confluence permissive
ALL_DAY = [SessionZone('Asia', 0, 24, 0, 24)]


def buy_every_bar(kind):
    """Rule yielding a 1-ATR-risk buy at the close of every bar."""
    def rule(ctx, market, state):
        if ctx.atr > 0:
            price = ctx.candle.c
            yield Signal(time=ctx.candle.t, price=price, direction=Direction.BUY,
                         basis='scripted', setup=kind.value, stop=price - ctx.atr,
                         tp1=price + ctx.atr, tp2=price + ctx.atr * 2)
    return rule


def failing_rule(ctx, market, state):
    raise RuntimeError('broken rule')
    yield  # pragma: no cover


@pytest.fixture
def day_candles():
    """Six hours of 5-minute bars on one UTC day"""
    return random_walk_candles(72, seed=11)


def run(candles, weights=None, options=None):
    engine = SignalEngine(ALL_DAY, weights, options)
    return engine.detect(candles, BULLISH, [], [])


class TestAdmissionPipeline:

    def test_cooldown_and_daily_cap(self, monkeypatch, day_candles):
        monkeypatch.setattr(signal_engine, 'RULES', [(SetupKind.TURTLE_SOUP, buy_every_bar(SetupKind.TURTLE_SOUP))])
        signals = run(day_candles)

        assert len(signals) == signal_engine.MAX_TRADES_PER_DAY
        bars = [next(i for i, c in enumerate(day_candles) if c.t == s.time) for s in signals]
        assert bars[0] == 1
        assert all(b - a == signal_engine.SETUP_COOLDOWN for a, b in zip(bars, bars[1:]))

    def test_admitted_signals_are_complete(self, monkeypatch, day_candles):
        monkeypatch.setattr(signal_engine, 'RULES', [(SetupKind.TURTLE_SOUP, buy_every_bar(SetupKind.TURTLE_SOUP))])
        for s in run(day_candles):
            risk = s.price - s.stop
            assert risk > 0
            # 1R target is lifted to the 1.25R floor
            assert s.tp1 == pytest.approx(s.price + risk * 1.25)
            assert s.tp2 == pytest.approx(s.price + risk * 2)
            assert s.tp3 > s.tp2 and s.tp4 > s.tp3
            assert 0.75 <= s.size_multiplier <= 1.5
            assert s.session == 'Asia'
            assert s.bias is BiasLabel.BULLISH

    def test_failing_rule_does_not_abort_pass(self, monkeypatch, day_candles, caplog):
        monkeypatch.setattr(signal_engine, 'RULES', [
            (SetupKind.ENGULFING_SHIFT, failing_rule),
            (SetupKind.TURTLE_SOUP, buy_every_bar(SetupKind.TURTLE_SOUP)),
        ])
        with caplog.at_level(logging.ERROR, logger='ict_engine.signal_engine'):
            signals = run(day_candles)

        assert len(signals) == signal_engine.MAX_TRADES_PER_DAY
        assert "Setup rule 'Engulfing Shift' failed" in caplog.text

    def test_disabled_setup_never_admitted(self, monkeypatch, day_candles):
        kind = SetupKind.MOMENTUM_CONTINUATION
        assert profile_for(kind.value).disabled
        monkeypatch.setattr(signal_engine, 'RULES', [(kind, buy_every_bar(kind))])
        assert run(day_candles) == []

    def test_one_signal_per_bar(self, monkeypatch, day_candles):
        monkeypatch.setattr(signal_engine, 'RULES', [
            (SetupKind.TURTLE_SOUP, buy_every_bar(SetupKind.TURTLE_SOUP)),
            (SetupKind.SILVER_BULLET, buy_every_bar(SetupKind.SILVER_BULLET)),
        ])
        signals = run(day_candles)
        times = [s.time for s in signals]
        assert len(times) == len(set(times))

    def test_weights_disallow_and_scale(self, monkeypatch, day_candles):
        kind = SetupKind.TURTLE_SOUP
        monkeypatch.setattr(signal_engine, 'RULES', [(kind, buy_every_bar(kind))])

        blocked = {kind.value: SetupWeight(win_rate=0.2, total_trades=10, allowed=False)}
        assert run(day_candles, weights=blocked) == []

        boosted = {kind.value: SetupWeight(win_rate=0.8, total_trades=10, size_multiplier=1.5)}
        plain = run(day_candles)
        scaled = run(day_candles, weights=boosted)
        assert [s.time for s in scaled] == [s.time for s in plain]
        for a, b in zip(plain, scaled):
            assert b.size_multiplier == pytest.approx(a.size_multiplier * 1.5)

    def test_display_limit_is_a_suffix(self, monkeypatch, day_candles):
        kind = SetupKind.TURTLE_SOUP
        monkeypatch.setattr(signal_engine, 'RULES', [(kind, buy_every_bar(kind))])
        full = run(day_candles)
        limited = run(day_candles, options=EngineOptions(ui_signal_limit=3))
        assert [s.time for s in limited] == [s.time for s in full[-3:]]

    def test_bias_flip_freezes_admissions(self):
        state = ScanState()
        day = day_key(0)
        state.update_bias_freeze(day, BiasLabel.BULLISH, 0, 3 * HOUR_MS)
        assert not state.bias_freeze
        state.update_bias_freeze(day, BiasLabel.BEARISH, HOUR_MS, 3 * HOUR_MS)
        assert state.bias_freeze
        state.update_bias_freeze(day, BiasLabel.BEARISH, 2 * HOUR_MS, 3 * HOUR_MS)
        assert state.bias_freeze
        # a flip still in place when the window ends re-arms the freeze
        state.update_bias_freeze(day, BiasLabel.BEARISH, 4 * HOUR_MS, 3 * HOUR_MS)
        assert state.bias_freeze
        assert state.bias_freeze_until == 7 * HOUR_MS
        state.update_bias_freeze(day, BiasLabel.BULLISH, 7 * HOUR_MS, 3 * HOUR_MS)
        assert not state.bias_freeze
        assert state.active_day_bias is BiasLabel.BULLISH


class TestFullScan:

    def _detect(self, candles):
        swings = detect_swings(candles, 2)
        blocks = detect_order_blocks(candles)
        return detect_signals(
            candles, compute_bias(candles), detect_fvg(candles), blocks,
            swings=swings, sweeps=detect_liquidity_sweeps(candles),
            breakers=detect_breaker_blocks(blocks, candles),
            premium_range=compute_premium_discount_range(candles),
            htf_levels=compute_htf_levels(candles),
        )

    def test_invariants_hold(self, sample_candles):
        signals = self._detect(sample_candles)

        per_day = {}
        times = [s.time for s in signals]
        assert len(times) == len(set(times))
        for s in signals:
            assert s.stop is not None
            assert s.risk > 0
            if s.direction is Direction.BUY:
                assert s.stop < s.price
            else:
                assert s.stop > s.price
            assert not profile_for(s.setup).disabled
            per_day[day_key(s.time)] = per_day.get(day_key(s.time), 0) + 1
        assert all(count <= 12 for count in per_day.values())

    def test_scan_is_a_pure_recompute(self, sample_candles):
        first = self._detect(sample_candles)
        second = self._detect(sample_candles)
        assert [s.to_dict() for s in first] == [s.to_dict() for s in second]

    @pytest.mark.parametrize('n', [0, 1])
    def test_degenerate_input(self, n):
        candles = random_walk_candles(n)
        assert self._detect(candles) == []


class TestHelpers:

    def test_setup_filter_blocks_opposing_gap(self):
        gaps = [Gap(0, 1, top=101, bottom=101.5, type=Polarity.BEARISH)]
        assert setup_filter(Direction.BUY, 100, 103, None, gaps, 1.0) is None
        assert setup_filter(Direction.BUY, 100, 100.8, None, gaps, 1.0) == 1.0

    def test_setup_filter_projects_three_atr(self):
        gaps = [Gap(0, 1, top=101, bottom=102.5, type=Polarity.BEARISH)]
        assert setup_filter(Direction.BUY, 100, None, None, gaps, 1.0) is None
        assert setup_filter(Direction.BUY, 100, None, None, gaps, 0.5) == 1.0

    def test_setup_filter_uses_weights(self):
        weight = SetupWeight(win_rate=0.7, total_trades=8, size_multiplier=1.5)
        assert setup_filter(Direction.SELL, 100, 98, weight, [], 1.0) == 1.5

    def test_target_ladder_tier_one(self):
        signal = Signal(time=0, price=100, direction=Direction.BUY, basis='', stop=99)
        apply_target_ladder(signal, 1.0, 0.1, tier_one=True)
        assert (signal.tp1, signal.tp2, signal.tp3, signal.tp4) == (101.5, 103, 104.5, 106)

    def test_target_ladder_tier_two_is_wider(self):
        signal = Signal(time=0, price=100, direction=Direction.SELL, basis='', stop=101)
        apply_target_ladder(signal, 1.0, 0.1, tier_one=False)
        assert (signal.tp1, signal.tp2, signal.tp3, signal.tp4) == (98, 97, 95.5, 94)

    def test_target_ladder_atr_floor(self):
        signal = Signal(time=0, price=100, direction=Direction.BUY, basis='', stop=99.9)
        apply_target_ladder(signal, 0.1, 1.0, tier_one=True)
        assert signal.tp1 == pytest.approx(101.5)
        assert signal.tp4 == pytest.approx(104)

    def test_position_size_clamps(self):
        assert position_size(100, 0, tier_one=False) == 1.0
        assert position_size(100, 10, tier_one=False) == 2.5
        assert position_size(100, 0.001, tier_one=False) == 0.5
        assert position_size(100, 10, tier_one=True) == 1.5
        assert position_size(100, 0.001, tier_one=True) == 0.75

    def test_catalog_lists_every_setup(self):
        names = [entry['name'] for entry in setup_catalog()]
        assert len(names) == len(SetupKind)
        disabled = {entry['name'] for entry in setup_catalog() if entry['disabled']}
        assert disabled == {'Momentum Continuation', 'Mean Reversion Fade',
                            'Range Breakout', 'Pullback Reentry'}
