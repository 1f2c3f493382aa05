"""
Market Structure Data Model

Plain records shared by the structure analyzer, zone detectors, signal
engine and trade simulator. Candle times are epoch milliseconds (UTC).
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any, NamedTuple


# ═══════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════

class BiasLabel(Enum):
    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"


class Polarity(Enum):
    """Orientation of a structure shift, gap or block."""
    BULLISH = "bullish"
    BEARISH = "bearish"

    @property
    def opposite(self) -> 'Polarity':
        return Polarity.BEARISH if self is Polarity.BULLISH else Polarity.BULLISH


class SwingType(Enum):
    HIGH = "high"
    LOW = "low"


class ShiftLabel(Enum):
    BOS = "BOS"
    CHOCH = "CHoCH"


class Direction(Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.BUY else -1

    @property
    def polarity(self) -> Polarity:
        return Polarity.BULLISH if self is Direction.BUY else Polarity.BEARISH


class SweepType(Enum):
    EQH = "eqh"
    EQL = "eql"


class SweepDirection(Enum):
    UP = "up"
    DOWN = "down"


class BreakerGrade(Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


# ═══════════════════════════════════════════════════════════════════════════
# PRICE DATA
# ═══════════════════════════════════════════════════════════════════════════

class Candle(NamedTuple):
    """Single OHLCV bar."""
    t: int          # epoch ms
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0

    @property
    def body(self) -> float:
        return abs(self.c - self.o)

    @property
    def range(self) -> float:
        return self.h - self.l


# ═══════════════════════════════════════════════════════════════════════════
# STRUCTURE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Bias:
    label: BiasLabel
    reason: str


@dataclass(frozen=True)
class Swing:
    index: int
    time: int
    price: float
    type: SwingType


@dataclass(frozen=True)
class StructureShift:
    time: int
    price: float
    direction: Polarity
    label: ShiftLabel


@dataclass(frozen=True)
class StructureShiftOptions:
    min_swing_distance: int = 1
    min_spacing_bars: int = 3
    min_break_pct: float = 0.00008


# ═══════════════════════════════════════════════════════════════════════════
# ZONES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Gap:
    """Fair value gap. For bullish gaps ``top`` is the first candle's high."""
    start_time: int
    end_time: int
    top: float
    bottom: float
    type: Polarity

    @property
    def upper(self) -> float:
        return max(self.top, self.bottom)

    @property
    def lower(self) -> float:
        return min(self.top, self.bottom)

    @property
    def midpoint(self) -> float:
        return (self.top + self.bottom) / 2


@dataclass(frozen=True)
class OrderBlock:
    start_time: int
    end_time: int
    high: float
    low: float
    type: Polarity


@dataclass(frozen=True)
class BreakerBlock:
    start_time: int
    end_time: int
    high: float
    low: float
    type: Polarity
    source_ob_type: Polarity
    grade: BreakerGrade


@dataclass(frozen=True)
class LiquiditySweep:
    time: int
    price: float
    type: SweepType
    direction: SweepDirection


@dataclass(frozen=True)
class EqualLiquidityLevel:
    price: float
    times: tuple
    kind: str  # "highs" | "lows"


@dataclass(frozen=True)
class PremiumDiscountRange:
    high: float
    low: float
    equilibrium: float


@dataclass(frozen=True)
class HtfLevels:
    prev_day_high: Optional[float] = None
    prev_day_low: Optional[float] = None
    prev_week_high: Optional[float] = None
    prev_week_low: Optional[float] = None
    week_open: Optional[float] = None
    month_open: Optional[float] = None


@dataclass(frozen=True)
class SmtSignal:
    time: int
    type: Direction
    reason: str


# ═══════════════════════════════════════════════════════════════════════════
# SESSIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SessionZone:
    """Trading session window, hours in UTC, end exclusive."""
    label: str
    start_hour: int
    end_hour: int
    kill_start_hour: Optional[int] = None
    kill_end_hour: Optional[int] = None


@dataclass
class SessionOpenLevels:
    midnight_open: Optional[float] = None
    london_open: Optional[float] = None
    ny_open: Optional[float] = None

    def values(self) -> List[float]:
        return [v for v in (self.midnight_open, self.london_open, self.ny_open) if v is not None]


# ═══════════════════════════════════════════════════════════════════════════
# SIGNALS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Signal:
    """Trade idea emitted by the signal engine or the Model 2022 detector."""
    time: int
    price: float
    direction: Direction
    basis: str
    setup: Optional[str] = None
    stop: Optional[float] = None
    tp1: Optional[float] = None
    tp2: Optional[float] = None
    tp3: Optional[float] = None
    tp4: Optional[float] = None
    size_multiplier: Optional[float] = None
    session: Optional[str] = None
    bias: Optional[BiasLabel] = None

    @property
    def risk(self) -> Optional[float]:
        """Directional distance from price to stop (positive when valid)."""
        if self.stop is None:
            return None
        return (self.price - self.stop) * self.direction.sign

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['direction'] = self.direction.value
        data['bias'] = self.bias.value if self.bias else None
        return data


@dataclass(frozen=True)
class SetupWeight:
    """Adaptive per-setup statistics read from the trade outcome log."""
    win_rate: float
    total_trades: int
    allowed: bool = True
    size_multiplier: float = 1.0


SetupWeights = Dict[str, SetupWeight]


@dataclass
class MarketReading:
    """Complete structural reading plus admitted signals for one candle set."""
    bias: Bias
    weekly_bias: Bias
    swings: List[Swing] = field(default_factory=list)
    structure_shifts: List[StructureShift] = field(default_factory=list)
    gaps: List[Gap] = field(default_factory=list)
    order_blocks: List[OrderBlock] = field(default_factory=list)
    breaker_blocks: List[BreakerBlock] = field(default_factory=list)
    sweeps: List[LiquiditySweep] = field(default_factory=list)
    equal_levels: List[EqualLiquidityLevel] = field(default_factory=list)
    premium_discount: Optional[PremiumDiscountRange] = None
    htf_levels: HtfLevels = field(default_factory=HtfLevels)
    signals: List[Signal] = field(default_factory=list)
    scanner: Optional[Any] = None
    model2022: Optional[Any] = None
