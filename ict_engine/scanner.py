"""
Readiness Scanner

Scores the latest signal 0-100 against bias, dealing-range side, reward to
risk and session timing, and labels it for display.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .models import Bias, BiasLabel, Direction, PremiumDiscountRange, Signal
from .timeutils import utc_hour

BASE_SCORE = 50.0


@dataclass
class ScannerResult:
    direction: Optional[Direction]
    label: str
    score: float
    summary: str
    reasons: List[str] = field(default_factory=list)
    price: Optional[float] = None
    signal: Optional[Signal] = None

    def to_dict(self) -> dict:
        return {
            'direction': self.direction.value if self.direction else None,
            'label': self.label,
            'score': self.score,
            'summary': self.summary,
            'reasons': list(self.reasons),
            'price': self.price,
            'signal': self.signal.to_dict() if self.signal else None,
        }


def _reward_to_risk(signal: Signal) -> Optional[float]:
    if signal.stop is None or signal.tp1 is None:
        return None
    risk = signal.risk
    if risk <= 0:
        return None
    return (signal.tp1 - signal.price) * signal.direction.sign / risk


def _label(direction: Direction, score: float) -> str:
    side = 'Buy' if direction is Direction.BUY else 'Sell'
    opposite = 'Sell' if direction is Direction.BUY else 'Buy'
    if score >= 80:
        return f"Strong {side}"
    if score >= 65:
        return side
    if score <= 35:
        return f"Strong {opposite}"
    if score <= 50:
        return f"Caution {side}"
    return side


def evaluate_scanner(signal: Optional[Signal], bias: Optional[Bias] = None,
                     premium_discount: Optional[PremiumDiscountRange] = None,
                     latest_price: Optional[float] = None) -> ScannerResult:
    if signal is None:
        return ScannerResult(
            direction=None,
            label='Neutral',
            score=BASE_SCORE,
            summary='No qualified ICT setups on this timeframe yet.',
            reasons=['Await alignment of ICT confluence factors.'],
            price=latest_price,
        )

    is_buy = signal.direction is Direction.BUY
    price = latest_price if latest_price is not None else signal.price
    score = BASE_SCORE
    reasons = []

    # a neutral bias counts against the signal
    if bias is not None:
        aligned = bias.label is (BiasLabel.BULLISH if is_buy else BiasLabel.BEARISH)
        if aligned:
            score += 15
            reasons.append(f"Bias {bias.label.value} supports {'long' if is_buy else 'short'} setups.")
        else:
            score -= 15
            reasons.append(f"Bias {bias.label.value} contradicts signal direction.")

    if premium_discount is not None:
        eq = premium_discount.equilibrium
        if is_buy and price <= eq:
            score += 15
            reasons.append('Price trades inside the discount side of the dealing range.')
        elif not is_buy and price >= eq:
            score += 15
            reasons.append('Price trades inside the premium side of the dealing range.')

    rr = _reward_to_risk(signal)
    if rr is not None:
        if rr >= 2:
            score += 10
            reasons.append(f"Risk-to-reward is attractive ({rr:.2f}R).")
        elif rr < 1:
            score -= 10
            reasons.append(f"Risk-to-reward is weak ({rr:.2f}R).")

    hour = utc_hour(signal.time)
    if 12 <= hour <= 20:
        score += 10
        reasons.append('Signal printed during a high-liquidity NY session window.')
    elif 7 <= hour < 12:
        score += 5
        reasons.append('Signal printed during the London session.')
    else:
        score -= 5
        reasons.append('Signal is outside typical kill-zones; monitor for confirmation.')

    score = max(0.0, min(100.0, score))
    label = _label(signal.direction, score)
    return ScannerResult(
        direction=signal.direction,
        label=label,
        score=score,
        summary=f"{label} opportunity ({score:.0f} confidence).",
        reasons=reasons,
        price=price,
        signal=signal,
    )
