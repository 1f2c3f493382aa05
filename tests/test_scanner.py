"""
Tests for the readiness scanner
"""

import pytest

from factories import HOUR, MONDAY_MS
from ict_engine.models import Bias, BiasLabel, Direction, PremiumDiscountRange, Signal
from ict_engine.scanner import evaluate_scanner

RANGE = PremiumDiscountRange(high=102, low=100, equilibrium=101)


def signal_at(hour, direction=Direction.BUY, price=100.0, stop=99.0, tp1=102.0):
    return Signal(time=MONDAY_MS + hour * HOUR, price=price, direction=direction,
                  basis='test', setup='Turtle Soup', stop=stop, tp1=tp1)


class TestScanner:

    def test_no_signal_is_neutral(self):
        result = evaluate_scanner(None, latest_price=100.5)
        assert result.label == 'Neutral'
        assert result.score == 50
        assert result.direction is None
        assert result.price == 100.5

    def test_full_alignment_is_strong(self):
        result = evaluate_scanner(signal_at(13), Bias(BiasLabel.BULLISH, ''), RANGE)
        assert result.score == 100
        assert result.label == 'Strong Buy'
        assert result.summary == 'Strong Buy opportunity (100 confidence).'
        assert len(result.reasons) == 4

    def test_everything_against_flips_label(self):
        sell = signal_at(3, Direction.SELL, stop=101, tp1=99.5)
        result = evaluate_scanner(sell, Bias(BiasLabel.NEUTRAL, ''), RANGE)
        # -15 neutral bias, -10 weak RR, -5 outside kill zones
        assert result.score == 20
        assert result.label == 'Strong Buy'
        assert 'Bias Neutral contradicts signal direction.' in result.reasons

    def test_london_with_opposing_bias_is_caution(self):
        result = evaluate_scanner(signal_at(8, tp1=101.5), Bias(BiasLabel.BEARISH, ''))
        assert result.score == 40
        assert result.label == 'Caution Buy'

    def test_latest_price_decides_range_side(self):
        signal = signal_at(13, tp1=101.5)
        in_discount = evaluate_scanner(signal, premium_discount=RANGE)
        above_eq = evaluate_scanner(signal, premium_discount=RANGE, latest_price=101.5)
        assert in_discount.score - above_eq.score == 15
        assert above_eq.price == 101.5

    @pytest.mark.parametrize('score_hour,expected', [(13, 'Buy'), (3, 'Caution Buy')])
    def test_plain_labels(self, score_hour, expected):
        # no bias, no range, 1.5R
        result = evaluate_scanner(signal_at(score_hour, tp1=101.5))
        assert result.label == expected

    def test_to_dict(self):
        data = evaluate_scanner(signal_at(13), Bias(BiasLabel.BULLISH, ''), RANGE).to_dict()
        assert data['direction'] == 'buy'
        assert data['signal']['setup'] == 'Turtle Soup'
        assert data['score'] == 100
