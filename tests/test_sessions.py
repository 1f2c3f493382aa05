"""
Tests for session classification and time helpers
"""

import pytest

from factories import DAY, HOUR, MINUTE, MONDAY_MS, make_candle
from ict_engine.models import Direction, SessionOpenLevels, SessionZone
from ict_engine.sessions import (
    DEFAULT_SESSION_ZONES, OFF_HOURS_LABEL, classify_session, compute_session_open_levels,
    is_london_or_ny, is_new_york, is_within_kill_zone, resolve_session, respects_session_open,
)
from ict_engine.timeutils import day_key, hour_in_tz, infer_timeframe_ms, iso_week_key, utc_hour


def at_hour(hour, minute=0):
    return MONDAY_MS + hour * HOUR + minute * MINUTE


class TestTimeHelpers:

    def test_keys(self):
        assert day_key(MONDAY_MS) == '2024-03-04'
        assert iso_week_key(MONDAY_MS) == '2024-W10'
        assert utc_hour(at_hour(13, 30)) == 13

    def test_new_york_local_hour(self):
        # 2024-03-04 is before the US DST switch, so New York is UTC-5
        assert hour_in_tz(at_hour(13)) == 8

    def test_infer_timeframe(self):
        candles = [make_candle(MONDAY_MS + i * 5 * MINUTE, 1, 1, 1, 1) for i in range(10)]
        assert infer_timeframe_ms(candles) == 5 * MINUTE
        assert infer_timeframe_ms(candles[:1]) is None


class TestClassification:

    @pytest.mark.parametrize('hour,label', [
        (1, 'Asia'), (8, 'London'), (13, 'New York'),
    ])
    def test_configured_zones(self, hour, label):
        assert classify_session(at_hour(hour), DEFAULT_SESSION_ZONES).label == label

    def test_unconfigured_hour(self):
        assert classify_session(at_hour(5), DEFAULT_SESSION_ZONES) is None

    @pytest.mark.parametrize('hour,label', [
        (4, 'Asia'), (11, 'London'), (17, 'New York'), (21, OFF_HOURS_LABEL),
    ])
    def test_fallback_always_yields_a_session(self, hour, label):
        assert resolve_session(at_hour(hour), DEFAULT_SESSION_ZONES).label == label

    def test_off_hours_has_no_kill_window(self):
        zone = resolve_session(at_hour(22), DEFAULT_SESSION_ZONES)
        assert zone.kill_start_hour is None
        assert not is_london_or_ny(zone.label)

    def test_kill_zone(self):
        ny = SessionZone('New York', 12, 16, 12, 15)
        assert is_within_kill_zone(at_hour(14), ny)
        assert not is_within_kill_zone(at_hour(15), ny)
        assert is_within_kill_zone(at_hour(3), SessionZone('Custom', 0, 6))

    def test_label_matching(self):
        assert is_new_york('New York')
        assert is_new_york('NY AM')
        assert not is_new_york('Sydney')
        assert is_london_or_ny('London')


class TestSessionOpens:

    def test_open_levels_per_day(self):
        candles = [
            make_candle(at_hour(0), 100, 101, 99, 100),
            make_candle(at_hour(7), 102, 103, 101, 102),
            make_candle(at_hour(12), 98, 99, 97, 98),
            make_candle(at_hour(12) + DAY, 95, 96, 94, 95),
        ]
        levels = compute_session_open_levels(candles, DEFAULT_SESSION_ZONES)
        monday = levels['2024-03-04']
        assert (monday.midnight_open, monday.london_open, monday.ny_open) == (100, 102, 98)
        assert levels['2024-03-05'].ny_open == 95
        assert levels['2024-03-05'].midnight_open is None

    def test_respects_session_open(self):
        levels = SessionOpenLevels(midnight_open=100, london_open=102)
        assert respects_session_open(Direction.BUY, levels, 101)
        assert not respects_session_open(Direction.BUY, levels, 99)
        assert respects_session_open(Direction.SELL, levels, 101)
        assert not respects_session_open(Direction.SELL, levels, 103)
        assert respects_session_open(Direction.SELL, None, 103)
        assert respects_session_open(Direction.BUY, SessionOpenLevels(), 1)
