"""
Trade Simulator

Paper trades driven bar by bar from engine signals or manual entries.

Lifecycle:
    planned -> active -> closed
    planned -> canceled

Every transition is a pure function returning a new ``Trade``. ``advance``
applies at most one transition per bar, in this order:
- fill a planned manual trade whose entry is inside the bar
- take the partial at 2R (signal trades outside tier one)
- move the stop to breakeven once price reaches 1.5R
- trail the stop 0.5 ATR behind the close once at breakeven
- close at stop or target; when one bar crosses both, the boundary
  nearer the bar's open decides
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .models import BiasLabel, Candle, Direction, Signal
from .setups import profile_for

logger = logging.getLogger(__name__)

DEFAULT_STOP_PCT = 0.001
FALLBACK_RISK_PCT = 0.0008
MIN_RISK_PCT = 0.0005
PARTIAL_R = 2.0
PARTIAL_FRACTION = 0.5
BREAKEVEN_R = 1.5
TRAIL_ATR_MULT = 0.5
TRAIL_EPSILON = 1e-6
BREAKEVEN_EPSILON = 1e-8
MANUAL_SETUP = 'Manual Entry'
MANUAL_SESSION = 'Manual'


class TradeStatus(Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELED = "canceled"


class TradeResult(Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class InvalidTransition(ValueError):
    """Requested transition is not legal from the trade's current status."""


@dataclass(frozen=True)
class Trade:
    id: str
    direction: Direction
    entry: float
    stop: Optional[float]
    target: Optional[float]
    status: TradeStatus = TradeStatus.ACTIVE
    setup: Optional[str] = None
    session_label: Optional[str] = None
    bias_label: Optional[BiasLabel] = None
    manual: bool = False
    initial_stop: Optional[float] = None
    risk: Optional[float] = None
    r_multiple: Optional[float] = None
    take_partial: Optional[float] = None
    partial_fraction: Optional[float] = None
    partial_realized: float = 0.0
    partial_hit: bool = False
    breakeven_triggered: bool = False
    position_size: float = 1.0
    open_time: Optional[int] = None
    exit_time: Optional[int] = None
    result: Optional[TradeResult] = None
    pnl: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TradeStatus.CLOSED, TradeStatus.CANCELED)

    @property
    def remaining_fraction(self) -> float:
        if not self.partial_hit:
            return 1.0
        fraction = self.partial_fraction if self.partial_fraction is not None else PARTIAL_FRACTION
        return 1.0 - fraction

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'direction': self.direction.value,
            'entry': self.entry,
            'stop': self.stop,
            'target': self.target,
            'status': self.status.value,
            'setup': self.setup,
            'session_label': self.session_label,
            'bias_label': self.bias_label.value if self.bias_label else None,
            'manual': self.manual,
            'initial_stop': self.initial_stop,
            'risk': self.risk,
            'r_multiple': self.r_multiple,
            'take_partial': self.take_partial,
            'partial_fraction': self.partial_fraction,
            'partial_realized': self.partial_realized,
            'partial_hit': self.partial_hit,
            'breakeven_triggered': self.breakeven_triggered,
            'position_size': self.position_size,
            'open_time': self.open_time,
            'exit_time': self.exit_time,
            'result': self.result.value if self.result else None,
            'pnl': self.pnl,
        }


@dataclass(frozen=True)
class TradeOutcome:
    """Closed-trade record handed to the outcome sink."""
    setup: str
    session: str
    bias: str
    result: TradeResult
    r_multiple: float

    def to_dict(self) -> dict:
        return {
            'setup': self.setup,
            'session': self.session,
            'bias': self.bias,
            'result': self.result.value,
            'rMultiple': self.r_multiple,
        }


# ═══════════════════════════════════════════════════════════════════════════
# CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════════

def trade_from_signal(signal: Signal) -> Trade:
    """Active trade opened at the signal price."""
    sign = signal.direction.sign
    price = signal.price
    stop = signal.stop if signal.stop is not None else price * (1 - sign * DEFAULT_STOP_PCT)
    directional_risk = (price - stop) * sign
    if directional_risk <= 0:
        directional_risk = abs(price) * FALLBACK_RISK_PCT
        stop = price - sign * directional_risk
    risk = max(directional_risk, abs(price) * MIN_RISK_PCT)

    tier_one = profile_for(signal.setup).tier_one
    target = next(
        (tp for tp in (signal.tp1, signal.tp2, signal.tp3, signal.tp4) if tp is not None),
        price + sign * risk,
    )
    return Trade(
        id=f"{signal.setup or 'ict'}-{signal.time}",
        direction=signal.direction,
        entry=price,
        stop=stop,
        target=target,
        status=TradeStatus.ACTIVE,
        setup=signal.setup,
        session_label=signal.session,
        bias_label=signal.bias,
        initial_stop=stop,
        risk=risk,
        r_multiple=abs(target - price) / risk if risk > 0 else None,
        take_partial=None if tier_one else price + sign * risk * PARTIAL_R,
        partial_fraction=None if tier_one else PARTIAL_FRACTION,
        position_size=signal.size_multiplier if signal.size_multiplier is not None else 1.0,
        open_time=signal.time,
    )


def manual_trade(direction: Direction, entry: float, stop: float, target: float,
                 size: float = 1.0, time: Optional[int] = None) -> Trade:
    """
    Planned trade that fills once a bar trades through ``entry``.

    Raises:
        ValueError: stop/entry/target are not ordered for the direction
    """
    values = (entry, stop, target, size)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        raise ValueError("Entry, stop, target and size must be finite numbers")
    if size <= 0:
        raise ValueError("Position size must be positive")
    if direction is Direction.BUY:
        if stop >= entry:
            raise ValueError("For long trades the stop must be below the entry price")
        if target <= entry:
            raise ValueError("For long trades the target must be above the entry price")
    else:
        if stop <= entry:
            raise ValueError("For short trades the stop must be above the entry price")
        if target >= entry:
            raise ValueError("For short trades the target must be below the entry price")

    risk = abs(entry - stop)
    return Trade(
        id=f"manual-{time if time is not None else 0}-{direction.value}-{entry:g}",
        direction=direction,
        entry=entry,
        stop=stop,
        target=target,
        status=TradeStatus.PLANNED,
        setup=MANUAL_SETUP,
        session_label=MANUAL_SESSION,
        manual=True,
        initial_stop=stop,
        risk=risk,
        r_multiple=abs(target - entry) / risk,
        position_size=size,
    )


# ═══════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═══════════════════════════════════════════════════════════════════════════

def _require(trade: Trade, *allowed: TradeStatus) -> None:
    if trade.status not in allowed:
        raise InvalidTransition(f"Trade {trade.id} is {trade.status.value}")


def fill(trade: Trade, time: int) -> Trade:
    _require(trade, TradeStatus.PLANNED)
    return replace(trade, status=TradeStatus.ACTIVE, open_time=time)


def cancel(trade: Trade) -> Trade:
    _require(trade, TradeStatus.PLANNED)
    return replace(trade, status=TradeStatus.CANCELED)


def take_partial(trade: Trade) -> Trade:
    """Bank the partial fraction at the partial level and move the stop to entry."""
    _require(trade, TradeStatus.ACTIVE)
    if trade.take_partial is None or trade.partial_hit:
        raise InvalidTransition(f"Trade {trade.id} has no open partial")
    fraction = trade.partial_fraction if trade.partial_fraction is not None else PARTIAL_FRACTION
    move = (trade.take_partial - trade.entry) * trade.direction.sign
    return replace(
        trade,
        stop=trade.entry,
        breakeven_triggered=True,
        partial_hit=True,
        partial_realized=trade.partial_realized + fraction * move * trade.position_size,
    )


def trigger_breakeven(trade: Trade) -> Trade:
    _require(trade, TradeStatus.ACTIVE)
    return replace(trade, stop=trade.entry, breakeven_triggered=True)


def trail(trade: Trade, new_stop: float) -> Trade:
    """Tighten the stop; a looser stop is ignored."""
    _require(trade, TradeStatus.ACTIVE)
    if trade.stop is not None and (new_stop - trade.stop) * trade.direction.sign <= 0:
        return trade
    return replace(trade, stop=new_stop)


def close(trade: Trade, result: TradeResult, time: int) -> Trade:
    """Settle at the stop (loss) or the target (win)."""
    _require(trade, TradeStatus.ACTIVE)
    exit_price = trade.target if result is TradeResult.WIN else trade.stop
    move = (exit_price - trade.entry) * trade.direction.sign
    pnl = trade.partial_realized + move * trade.remaining_fraction * trade.position_size
    return replace(trade, status=TradeStatus.CLOSED, result=result, pnl=pnl, exit_time=time)


def close_manually(trade: Trade, exit_price: float, time: int) -> Trade:
    _require(trade, TradeStatus.ACTIVE)
    pnl_per_unit = (exit_price - trade.entry) * trade.direction.sign
    if abs(pnl_per_unit) < BREAKEVEN_EPSILON:
        result = TradeResult.BREAKEVEN
    elif pnl_per_unit > 0:
        result = TradeResult.WIN
    else:
        result = TradeResult.LOSS
    return replace(trade, status=TradeStatus.CLOSED, result=result,
                   pnl=pnl_per_unit * trade.position_size, exit_time=time)


# ═══════════════════════════════════════════════════════════════════════════
# BAR RESOLUTION
# ═══════════════════════════════════════════════════════════════════════════

def _crossed(trade: Trade, candle: Candle, stop: float, target: float):
    if trade.direction is Direction.BUY:
        return candle.l <= stop, candle.h >= target
    return candle.h >= stop, candle.l <= target


def _resolve(candle: Candle, stop: float, target: float,
             hit_stop: bool, hit_target: bool) -> Optional[TradeResult]:
    if hit_stop and hit_target:
        if abs(candle.o - stop) <= abs(candle.o - target):
            return TradeResult.LOSS
        return TradeResult.WIN
    if hit_stop:
        return TradeResult.LOSS
    if hit_target:
        return TradeResult.WIN
    return None


def _partial_touched(trade: Trade, candle: Candle) -> bool:
    if trade.take_partial is None or trade.partial_hit:
        return False
    if trade.direction is Direction.BUY:
        return candle.h >= trade.take_partial
    return candle.l <= trade.take_partial


def advance(trade: Trade, candle: Candle, atr: float = 0.0) -> Trade:
    """Apply at most one transition for ``candle``; never raises."""
    if trade.status is TradeStatus.PLANNED:
        if trade.manual and candle.l <= trade.entry <= candle.h:
            return fill(trade, candle.t)
        return trade
    if trade.status is not TradeStatus.ACTIVE or trade.result is not None:
        return trade
    if trade.stop is None or trade.target is None:
        return trade
    if trade.open_time is None:
        return replace(trade, open_time=candle.t)
    if candle.t <= trade.open_time:
        return trade

    if trade.manual:
        # stop checked first, no tie-break
        hit_stop, hit_target = _crossed(trade, candle, trade.stop, trade.target)
        if hit_stop:
            return close(trade, TradeResult.LOSS, candle.t)
        if hit_target:
            return close(trade, TradeResult.WIN, candle.t)
        return trade

    if _partial_touched(trade, candle):
        return take_partial(trade)

    sign = trade.direction.sign
    initial_stop = trade.initial_stop if trade.initial_stop is not None else trade.stop
    risk = trade.risk if trade.risk is not None else abs(trade.entry - initial_stop)
    if trade.take_partial is None and risk > 0 and not trade.breakeven_triggered:
        favorable = candle.h if trade.direction is Direction.BUY else candle.l
        if (favorable - trade.entry) * sign >= risk * BREAKEVEN_R:
            return trigger_breakeven(trade)

    if trade.breakeven_triggered and atr > 0:
        candidate = candle.c - sign * atr * TRAIL_ATR_MULT
        if (candidate - trade.stop) * sign > TRAIL_EPSILON:
            return trail(trade, candidate)

    hit_stop, hit_target = _crossed(trade, candle, trade.stop, trade.target)
    result = _resolve(candle, trade.stop, trade.target, hit_stop, hit_target)
    if result is None:
        return trade
    return close(trade, result, candle.t)


def outcome_for(trade: Trade) -> Optional[TradeOutcome]:
    """Outcome record for a closed win/loss carrying a setup, else None."""
    if not trade.setup or trade.result not in (TradeResult.WIN, TradeResult.LOSS):
        return None
    fallback = 1.0 if trade.result is TradeResult.WIN else -1.0
    r_multiple = trade.r_multiple
    if r_multiple is None:
        if trade.risk and trade.risk > 0 and trade.pnl is not None:
            r_multiple = trade.pnl / (trade.position_size or 1.0) / trade.risk
        else:
            r_multiple = fallback
    if not math.isfinite(r_multiple):
        r_multiple = fallback
    return TradeOutcome(
        setup=trade.setup,
        session=trade.session_label or 'Unknown',
        bias=trade.bias_label.value if trade.bias_label else BiasLabel.NEUTRAL.value,
        result=trade.result,
        r_multiple=r_multiple,
    )


class TradeSimulator:
    """
    Folds incoming bars over a set of trades.

    Each newly closed win/loss with a setup is reported to ``sink``
    (for instance ``TradeMemory.record``).
    """

    def __init__(self, sink: Optional[Callable[[TradeOutcome], None]] = None):
        self.trades: Dict[str, Trade] = {}
        self.sink = sink

    def add(self, trade: Trade) -> Trade:
        # ids repeat for identical inputs; suffix within this simulator only
        if trade.id in self.trades:
            n = 2
            while f"{trade.id}-{n}" in self.trades:
                n += 1
            trade = replace(trade, id=f"{trade.id}-{n}")
        self.trades[trade.id] = trade
        return trade

    def open_from_signal(self, signal: Signal) -> Trade:
        return self.add(trade_from_signal(signal))

    def cancel(self, trade_id: str) -> Trade:
        trade = cancel(self.trades[trade_id])
        self.trades[trade_id] = trade
        return trade

    def close_manually(self, trade_id: str, exit_price: float, time: int) -> Trade:
        trade = close_manually(self.trades[trade_id], exit_price, time)
        self.trades[trade_id] = trade
        return trade

    def on_bar(self, candle: Candle, atr: float = 0.0) -> List[TradeOutcome]:
        outcomes = []
        for trade_id, trade in list(self.trades.items()):
            if trade.is_terminal:
                continue
            updated = advance(trade, candle, atr)
            self.trades[trade_id] = updated
            if updated.status is TradeStatus.CLOSED:
                logger.debug(f"Trade {trade_id} closed {updated.result.value} pnl={updated.pnl:.4f}")
                outcome = outcome_for(updated)
                if outcome is not None:
                    outcomes.append(outcome)
                    if self.sink is not None:
                        self.sink(outcome)
        return outcomes

    def run(self, candles: Iterable[Candle], atr: Optional[Sequence[Optional[float]]] = None) -> List[TradeOutcome]:
        outcomes = []
        for i, candle in enumerate(candles):
            value = atr[i] if atr is not None and i < len(atr) else None
            outcomes.extend(self.on_bar(candle, value or 0.0))
        return outcomes


@dataclass(frozen=True)
class BacktestResult:
    result: Optional[TradeResult] = None
    pnl: Optional[float] = None
    exit_time: Optional[int] = None
    partial_realized: float = 0.0
    partial_hit: bool = False


def simulate_trade_outcome(trade: Trade, candles: Sequence[Candle], signal_time: Optional[int] = None,
                           start_idx: int = 0, end_idx: Optional[int] = None) -> BacktestResult:
    """
    Resolve ``trade`` over a candle window in one pass, starting at the
    first bar at or after the signal time. The partial is taken first on
    the bar that touches it; stop and target use the open-distance
    tie-break.
    """
    time = signal_time if signal_time is not None else trade.open_time
    if trade.is_terminal or time is None or trade.stop is None or trade.target is None or not candles:
        return BacktestResult()
    idx = next((i for i, c in enumerate(candles) if c.t >= time), None)
    if idx is None:
        return BacktestResult()
    last = len(candles) - 1 if end_idx is None else min(end_idx, len(candles) - 1)

    state = fill(trade, time) if trade.status is TradeStatus.PLANNED else trade
    for i in range(max(idx, start_idx), last + 1):
        candle = candles[i]
        if _partial_touched(state, candle):
            state = take_partial(state)
            continue
        hit_stop, hit_target = _crossed(state, candle, state.stop, state.target)
        result = _resolve(candle, state.stop, state.target, hit_stop, hit_target)
        if result is not None:
            closed = close(state, result, candle.t)
            return BacktestResult(result, closed.pnl, candle.t, closed.partial_realized, closed.partial_hit)

    if state.partial_realized:
        return BacktestResult(partial_realized=state.partial_realized, partial_hit=state.partial_hit)
    return BacktestResult()
