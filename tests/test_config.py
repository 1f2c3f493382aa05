"""
Tests for config.yaml loading
"""

import pytest
import yaml

from ict_engine.config import (
    DEFAULT_CONFIG, engine_options, load_config, session_zones, structure_options, swing_lookback,
)
from ict_engine.sessions import DEFAULT_SESSION_ZONES


def write_yaml(tmp_path, data):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:

    def test_project_config_matches_defaults(self):
        config = load_config()
        assert config['server']['port'] == 8000
        assert session_zones(config) == list(DEFAULT_SESSION_ZONES)

    def test_partial_file_merges_over_defaults(self, tmp_path):
        path = write_yaml(tmp_path, {'engine': {'strict_sessions': True}, 'server': {'port': 9000}})
        config = load_config(path)
        assert config['engine']['strict_sessions'] is True
        assert config['engine']['swing_lookback'] == 2
        assert config['server']['port'] == 9000
        assert config['server']['host'] == '0.0.0.0'
        # defaults are never mutated
        assert DEFAULT_CONFIG['server']['port'] == 8000

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('')
        assert load_config(path) == DEFAULT_CONFIG

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(tmp_path / 'nope.yaml')

    def test_non_mapping(self, tmp_path):
        path = write_yaml(tmp_path, [1, 2, 3])
        with pytest.raises(ValueError):
            load_config(path)


class TestBuilders:

    def test_session_rows(self):
        config = {'sessions': [{'label': 'Sydney', 'start_hour': 21, 'end_hour': 24}]}
        zones = session_zones(config)
        assert len(zones) == 1
        assert zones[0].label == 'Sydney'
        assert zones[0].kill_start_hour is None

    @pytest.mark.parametrize('row', [
        {'label': 'Broken'},
        {'label': 'Late', 'start_hour': 20, 'end_hour': 30},
    ])
    def test_bad_session_rows(self, row):
        with pytest.raises(ValueError):
            session_zones({'sessions': [row]})

    def test_no_sessions_falls_back(self):
        assert session_zones({'sessions': []}) == list(DEFAULT_SESSION_ZONES)

    def test_engine_and_structure_options(self):
        config = {
            'engine': {'ui_signal_limit': 25, 'include_choch_fvg_ote': False, 'swing_lookback': 3},
            'structure': {'min_break_pct': 0.0001},
        }
        options = engine_options(config)
        assert options.ui_signal_limit == 25
        assert not options.include_choch_fvg_ote
        assert not options.strict_sessions

        shift = structure_options(config)
        assert (shift.min_swing_distance, shift.min_spacing_bars, shift.min_break_pct) == (2, 4, 0.0001)
        assert swing_lookback(config) == 3

    def test_zero_limit_means_unlimited(self):
        assert engine_options({'engine': {'ui_signal_limit': 0}}).ui_signal_limit is None
