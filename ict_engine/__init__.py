"""
ICT market-structure engine.

Detects swings, structure shifts, fair value gaps, order blocks, breakers
and liquidity sweeps on OHLCV candles, runs the rule-based setup engine
and simulates the resulting paper trades.
"""
from .analysis import analyze
from .models import Bias, BiasLabel, Candle, Direction, MarketReading, SessionZone, Signal
from .signal_engine import EngineOptions, SignalEngine, detect_signals
from .trade_memory import TradeMemory
from .trade_simulator import Trade, TradeSimulator, manual_trade, trade_from_signal

__all__ = [
    'analyze',
    'Bias',
    'BiasLabel',
    'Candle',
    'Direction',
    'MarketReading',
    'SessionZone',
    'Signal',
    'EngineOptions',
    'SignalEngine',
    'detect_signals',
    'TradeMemory',
    'Trade',
    'TradeSimulator',
    'manual_trade',
    'trade_from_signal',
]
