"""
Session classification

Maps bar times onto the configured UTC session table, with a fallback so
every bar carries some session, and tracks per-day session opening prices.
"""

import re
from typing import Dict, List, Optional, Sequence

from .models import Candle, Direction, SessionOpenLevels, SessionZone
from .timeutils import day_key, utc_hour

DEFAULT_SESSION_ZONES: List[SessionZone] = [
    SessionZone('Asia', 0, 3, 0, 2),
    SessionZone('London', 7, 10, 7, 10),
    SessionZone('New York', 12, 16, 12, 15),
]

OFF_HOURS_LABEL = 'Off Hours'

_LONDON = re.compile(r'london', re.IGNORECASE)
_NEW_YORK = re.compile(r'new york|\bny\b', re.IGNORECASE)


def is_london(label: str) -> bool:
    return bool(_LONDON.search(label or ''))


def is_new_york(label: str) -> bool:
    return bool(_NEW_YORK.search(label or ''))


def is_london_or_ny(label: str) -> bool:
    return is_london(label) or is_new_york(label)


def _find(sessions: Sequence[SessionZone], predicate) -> Optional[SessionZone]:
    return next((s for s in sessions if predicate(s.label)), None)


def classify_session(t: int, sessions: Sequence[SessionZone]) -> Optional[SessionZone]:
    """First configured zone whose [start, end) hour range contains the bar."""
    hour = utc_hour(t)
    return next((s for s in sessions if s.start_hour <= hour < s.end_hour), None)


def fallback_session(t: int, sessions: Sequence[SessionZone]) -> SessionZone:
    """Coarse classifier used when no configured zone matches."""
    hour = utc_hour(t)
    if hour < 6:
        return SessionZone('Asia', 0, 6, 0, 6)
    if hour < 12:
        return _widen(_find(sessions, is_london), 'London', 6, 12)
    if hour < 20:
        return _widen(_find(sessions, is_new_york), 'New York', 12, 20)
    return SessionZone(OFF_HOURS_LABEL, 20, 24)


def _widen(zone: Optional[SessionZone], label: str, start: int, end: int) -> SessionZone:
    if zone is None:
        return SessionZone(label, start, end, start, end)
    kill_start = zone.kill_start_hour if zone.kill_start_hour is not None else zone.start_hour
    kill_end = zone.kill_end_hour if zone.kill_end_hour is not None else zone.end_hour
    return SessionZone(label, zone.start_hour, zone.end_hour, kill_start, kill_end)


def resolve_session(t: int, sessions: Sequence[SessionZone]) -> SessionZone:
    return classify_session(t, sessions) or fallback_session(t, sessions)


def is_within_kill_zone(t: int, session: SessionZone) -> bool:
    """Zones without kill hours count as always inside their kill zone."""
    if session.kill_start_hour is None or session.kill_end_hour is None:
        return True
    hour = utc_hour(t)
    return session.kill_start_hour <= hour < session.kill_end_hour


def compute_session_open_levels(candles: Sequence[Candle],
                                sessions: Sequence[SessionZone]) -> Dict[str, SessionOpenLevels]:
    """Midnight, London and New York opening prices per UTC date."""
    london = _find(sessions, is_london)
    ny = _find(sessions, is_new_york)
    london_start = london.start_hour if london else 7
    ny_start = ny.start_hour if ny else 12

    levels: Dict[str, SessionOpenLevels] = {}
    for candle in candles:
        bucket = levels.setdefault(day_key(candle.t), SessionOpenLevels())
        hour = utc_hour(candle.t)
        if hour == 0 and bucket.midnight_open is None:
            bucket.midnight_open = candle.o
        if hour == london_start and bucket.london_open is None:
            bucket.london_open = candle.o
        if hour == ny_start and bucket.ny_open is None:
            bucket.ny_open = candle.o
    return levels


def respects_session_open(direction: Direction,
                          levels: Optional[SessionOpenLevels],
                          price: Optional[float]) -> bool:
    """Buys need price at or above some open, sells at or below."""
    if levels is None or price is None:
        return True
    opens = levels.values()
    if not opens:
        return True
    if direction is Direction.BUY:
        return any(price >= level for level in opens)
    return any(price <= level for level in opens)
