"""
Trade Memory

Per-setup outcome log that feeds the engine's adaptive weights. Setups that
keep losing are switched off; setups that keep winning get a larger size.
"""

import json
import logging
import math
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import SetupWeight, SetupWeights
from .trade_simulator import TradeOutcome, TradeResult

logger = logging.getLogger(__name__)

MIN_TRADES_FOR_FILTER = 5
MIN_WIN_RATE = 0.45
BOOST_WIN_RATE = 0.6
BOOST_SIZE = 1.5


@dataclass
class TradeRecord:
    setup: str
    session: str
    bias: str
    result: str  # "win" | "loss"
    rMultiple: float
    timestamp: int


class TradeMemory:
    """In-memory outcome log, optionally seeded from a JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self.records: List[TradeRecord] = []
        if self.path is not None:
            self.load(self.path)

    def load(self, path: Union[str, Path]) -> None:
        """Replace the log with the records in ``path``; bad files give an empty log."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Trade memory not found at {path}, starting empty")
            self.records = []
            return
        try:
            with open(path, 'r') as f:
                raw = json.load(f)
            self.records = [self._parse(item) for item in raw]
            logger.info(f"Loaded {len(self.records)} trade outcomes from {path}")
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Could not read trade memory {path}: {e}")
            self.records = []

    @staticmethod
    def _parse(item: dict) -> TradeRecord:
        result = item['result']
        if result not in ('win', 'loss'):
            raise ValueError(f"Unknown result: {result}")
        return TradeRecord(
            setup=str(item['setup']),
            session=str(item.get('session', 'Unknown')),
            bias=str(item.get('bias', 'Neutral')),
            result=result,
            rMultiple=float(item.get('rMultiple', 0)),
            timestamp=int(item.get('timestamp', 0)),
        )

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No trade memory path configured")
        with open(target, 'w') as f:
            json.dump([asdict(r) for r in self.records], f, indent=2)

    def log_trade(self, setup: str, session: str, bias: str, result: str,
                  r_multiple: float) -> TradeRecord:
        if not setup:
            raise ValueError("Trade outcome needs a setup")
        if result not in ('win', 'loss'):
            raise ValueError(f"Result must be 'win' or 'loss', got {result!r}")
        record = TradeRecord(
            setup=setup,
            session=session or 'Unknown',
            bias=bias or 'Neutral',
            result=result,
            rMultiple=r_multiple if math.isfinite(r_multiple) else 0.0,
            timestamp=int(time.time() * 1000),
        )
        self.records.append(record)
        return record

    def record(self, outcome: TradeOutcome) -> None:
        """Outcome sink for ``TradeSimulator``."""
        if outcome.result is TradeResult.BREAKEVEN:
            return
        self.log_trade(outcome.setup, outcome.session, outcome.bias,
                       outcome.result.value, outcome.r_multiple)

    def get_optimization_params(self) -> SetupWeights:
        stats: Dict[str, List[int]] = {}
        for record in self.records:
            wins_total = stats.setdefault(record.setup, [0, 0])
            wins_total[1] += 1
            if record.result == 'win':
                wins_total[0] += 1

        weights: SetupWeights = {}
        for setup, (wins, total) in stats.items():
            win_rate = wins / total if total else 0.0
            weights[setup] = SetupWeight(
                win_rate=win_rate,
                total_trades=total,
                allowed=total < MIN_TRADES_FOR_FILTER or win_rate >= MIN_WIN_RATE,
                size_multiplier=BOOST_SIZE if win_rate > BOOST_WIN_RATE else 1.0,
            )
        return weights
