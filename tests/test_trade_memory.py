"""
Tests for the trade outcome log and adaptive weights
"""

import json
import logging

import pytest

from ict_engine.trade_memory import TradeMemory
from ict_engine.trade_simulator import TradeOutcome, TradeResult


@pytest.fixture
def memory():
    return TradeMemory()


def log_many(memory, setup, wins, losses):
    for _ in range(wins):
        memory.log_trade(setup, 'London', 'Bullish', 'win', 2.0)
    for _ in range(losses):
        memory.log_trade(setup, 'London', 'Bullish', 'loss', 2.0)


class TestWeights:

    def test_losing_setup_is_switched_off(self, memory):
        log_many(memory, 'Turtle Soup', wins=2, losses=3)
        weight = memory.get_optimization_params()['Turtle Soup']
        assert weight.total_trades == 5
        assert weight.win_rate == pytest.approx(0.4)
        assert not weight.allowed
        assert weight.size_multiplier == 1.0

    def test_small_sample_stays_allowed(self, memory):
        log_many(memory, 'Judas Swing', wins=0, losses=4)
        assert memory.get_optimization_params()['Judas Swing'].allowed

    def test_winning_setup_is_boosted(self, memory):
        log_many(memory, 'Silver Bullet', wins=4, losses=1)
        weight = memory.get_optimization_params()['Silver Bullet']
        assert weight.allowed
        assert weight.size_multiplier == 1.5

    def test_empty_log(self, memory):
        assert memory.get_optimization_params() == {}


class TestLogging:

    def test_invalid_entries_are_rejected(self, memory):
        with pytest.raises(ValueError):
            memory.log_trade('', 'London', 'Bullish', 'win', 1.0)
        with pytest.raises(ValueError):
            memory.log_trade('Turtle Soup', 'London', 'Bullish', 'breakeven', 0.0)
        assert memory.records == []

    def test_defaults_and_non_finite_r(self, memory):
        record = memory.log_trade('Turtle Soup', '', '', 'win', float('nan'))
        assert (record.session, record.bias, record.rMultiple) == ('Unknown', 'Neutral', 0.0)
        assert record.timestamp > 0

    def test_outcome_sink_skips_breakeven(self, memory):
        memory.record(TradeOutcome('Turtle Soup', 'London', 'Bullish', TradeResult.BREAKEVEN, 0.0))
        memory.record(TradeOutcome('Turtle Soup', 'London', 'Bullish', TradeResult.LOSS, 1.25))
        assert len(memory.records) == 1
        assert memory.records[0].result == 'loss'
        assert memory.records[0].rMultiple == 1.25


class TestPersistence:

    def test_save_then_load(self, memory, tmp_path):
        path = tmp_path / 'memory.json'
        log_many(memory, 'Turtle Soup', wins=1, losses=1)
        memory.save(path)

        stored = json.loads(path.read_text())
        assert stored[0]['setup'] == 'Turtle Soup'
        assert 'rMultiple' in stored[0]

        reloaded = TradeMemory(path)
        assert reloaded.records == memory.records

    def test_missing_file_starts_empty(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger='ict_engine.trade_memory'):
            memory = TradeMemory(tmp_path / 'absent.json')
        assert memory.records == []
        assert 'not found' in caplog.text

    @pytest.mark.parametrize('content', [
        'not json',
        '{"setup": "x"}',
        '[{"setup": "x", "result": "draw"}]',
    ])
    def test_bad_file_starts_empty(self, tmp_path, content):
        path = tmp_path / 'memory.json'
        path.write_text(content)
        assert TradeMemory(path).records == []

    def test_save_needs_a_path(self, memory):
        with pytest.raises(ValueError):
            memory.save()
