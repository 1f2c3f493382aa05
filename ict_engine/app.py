"""
FastAPI backend for the ICT engine.

Stateless analysis over candles posted by the client, paper-trade
simulation and the adaptive trade-outcome log.
"""

import logging
import os
from typing import Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .analysis import analyze
from .config import engine_options, load_config, session_zones, structure_options, swing_lookback
from .indicators import ATR
from .models import BiasLabel, Candle, Direction, SessionZone, SetupWeight, Signal
from .setups import setup_catalog
from .signal_engine import EngineOptions
from .trade_memory import TradeMemory
from .trade_simulator import (
    TradeSimulator, manual_trade, simulate_trade_outcome, trade_from_signal,
)

config = load_config(os.getenv('ICT_ENGINE_CONFIG'))

# Configure logging
logging.basicConfig(
    level=str(config['server'].get('log_level', 'info')).upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SESSIONS: List[SessionZone] = session_zones(config)
ENGINE_OPTIONS: EngineOptions = engine_options(config)
SHIFT_OPTIONS = structure_options(config)
SWING_LOOKBACK = swing_lookback(config)

trade_memory = TradeMemory(config['trade_memory'].get('path'))


# ═══════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════

class CandleIn(BaseModel):
    """OHLCV bar, time in epoch milliseconds"""
    t: int
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0

    def to_candle(self) -> Candle:
        return Candle(self.t, self.o, self.h, self.l, self.c, self.v)


class SessionIn(BaseModel):
    label: str
    start_hour: int = Field(..., ge=0, le=24)
    end_hour: int = Field(..., ge=0, le=24)
    kill_start_hour: Optional[int] = Field(None, ge=0, le=24)
    kill_end_hour: Optional[int] = Field(None, ge=0, le=24)


class EngineOptionsIn(BaseModel):
    enforce_session_open_filter: bool = False
    ui_signal_limit: Optional[int] = Field(None, ge=1)
    strict_sessions: bool = False
    include_choch_fvg_ote: bool = True


class WeightIn(BaseModel):
    win_rate: float
    total_trades: int
    allowed: bool = True
    size_multiplier: float = 1.0


class AnalyzeRequest(BaseModel):
    candles: List[CandleIn]
    sessions: Optional[List[SessionIn]] = None
    options: Optional[EngineOptionsIn] = None
    weights: Optional[Dict[str, WeightIn]] = None
    use_trade_memory: bool = Field(True, description="Read weights from the trade memory when none are given")


class SignalIn(BaseModel):
    time: int
    price: float
    direction: Literal['buy', 'sell']
    basis: str = ''
    setup: Optional[str] = None
    stop: Optional[float] = None
    tp1: Optional[float] = None
    tp2: Optional[float] = None
    tp3: Optional[float] = None
    tp4: Optional[float] = None
    size_multiplier: Optional[float] = None
    session: Optional[str] = None
    bias: Optional[Literal['Bullish', 'Bearish', 'Neutral']] = None

    def to_signal(self) -> Signal:
        return Signal(
            time=self.time, price=self.price, direction=Direction(self.direction),
            basis=self.basis, setup=self.setup, stop=self.stop,
            tp1=self.tp1, tp2=self.tp2, tp3=self.tp3, tp4=self.tp4,
            size_multiplier=self.size_multiplier, session=self.session,
            bias=BiasLabel(self.bias) if self.bias else None,
        )


class ManualTradeIn(BaseModel):
    direction: Literal['buy', 'sell']
    entry: float
    stop: float
    target: float
    size: float = 1.0
    time: Optional[int] = None


class SimulateRequest(BaseModel):
    candles: List[CandleIn]
    signal: Optional[SignalIn] = None
    manual: Optional[ManualTradeIn] = None
    mode: Literal['live', 'backtest'] = 'live'
    record_outcome: bool = Field(False, description="Log the closed outcome to the trade memory")


class TradeOutcomeIn(BaseModel):
    setup: Optional[str] = None
    session: Optional[str] = None
    bias: Optional[str] = None
    result: Optional[str] = None
    rMultiple: Optional[float] = None


# ═══════════════════════════════════════════════════════════════════════════
# APP
# ═══════════════════════════════════════════════════════════════════════════

app = FastAPI(
    title="ICT Engine API",
    description="ICT market-structure analysis, signal engine and paper-trade simulation",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"ICT engine ready ({len(SESSIONS)} sessions, {len(trade_memory.records)} stored outcomes)")


@app.get("/health")
async def health_check():
    """Liveness probe"""
    return {
        "status": "healthy",
        "sessions": len(SESSIONS),
        "trade_memory_records": len(trade_memory.records),
    }


@app.get("/api/sessions")
async def list_sessions():
    """Configured session table (UTC hours)"""
    return {"sessions": jsonable_encoder(SESSIONS)}


@app.get("/api/setups")
async def list_setups():
    """Setup catalogue with priority, tier, risk cap and disabled flag"""
    return {"setups": setup_catalog()}


@app.post("/api/analyze")
def analyze_candles(request: AnalyzeRequest):
    """
    Analyze a candle series.

    Example:
        POST /api/analyze
        Body: {"candles": [{"t": 1709280000000, "o": 1, "h": 2, "l": 0.5, "c": 1.5}, ...]}
    """
    candles = sorted((c.to_candle() for c in request.candles), key=lambda c: c.t)

    sessions = SESSIONS
    if request.sessions:
        sessions = [SessionZone(**s.model_dump()) for s in request.sessions]

    options = ENGINE_OPTIONS
    if request.options is not None:
        options = EngineOptions(**request.options.model_dump())

    if request.weights is not None:
        weights = {name: SetupWeight(**w.model_dump()) for name, w in request.weights.items()}
    elif request.use_trade_memory:
        weights = trade_memory.get_optimization_params()
    else:
        weights = {}

    try:
        reading = analyze(candles, sessions, weights, options, SHIFT_OPTIONS, SWING_LOOKBACK)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Analyzed {len(candles)} candles: {len(reading.signals)} signals")
    return jsonable_encoder(reading)


@app.post("/api/trades/simulate")
def simulate_trade(request: SimulateRequest):
    """
    Evolve one trade over the posted candles.

    ``live`` folds bars through the full state machine (partial, breakeven,
    trailing); ``backtest`` runs the single-pass resolver.
    """
    if (request.signal is None) == (request.manual is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of 'signal' or 'manual'")

    candles = sorted((c.to_candle() for c in request.candles), key=lambda c: c.t)
    try:
        if request.signal is not None:
            trade = trade_from_signal(request.signal.to_signal())
        else:
            m = request.manual
            trade = manual_trade(Direction(m.direction), m.entry, m.stop, m.target, m.size, m.time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.mode == 'backtest':
        signal_time = request.signal.time if request.signal is not None else None
        if signal_time is None and candles:
            signal_time = candles[0].t
        result = simulate_trade_outcome(trade, candles, signal_time)
        return {"trade": trade.to_dict(), "backtest": jsonable_encoder(result)}

    sink = trade_memory.record if request.record_outcome else None
    simulator = TradeSimulator(sink=sink)
    trade = simulator.add(trade)
    outcomes = simulator.run(candles, ATR(14).series(candles))
    return {
        "trade": simulator.trades[trade.id].to_dict(),
        "outcomes": [o.to_dict() for o in outcomes],
    }


@app.get("/api/trade-memory")
async def get_trade_memory_weights():
    """Adaptive per-setup weights derived from logged outcomes"""
    return {"weights": jsonable_encoder(trade_memory.get_optimization_params())}


@app.post("/api/trade-memory")
async def log_trade_outcome(outcome: TradeOutcomeIn):
    """Append a closed-trade outcome to the in-memory log"""
    if not outcome.setup or outcome.result not in ('win', 'loss'):
        raise HTTPException(status_code=400, detail="Invalid payload")
    r_multiple = outcome.rMultiple if outcome.rMultiple is not None else 0.0
    record = trade_memory.log_trade(
        outcome.setup,
        outcome.session or 'Unknown',
        outcome.bias or 'Neutral',
        outcome.result,
        r_multiple,
    )
    return {"success": True, "record": jsonable_encoder(record)}
