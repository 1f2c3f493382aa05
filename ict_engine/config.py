"""
Configuration loading from config.yaml.

Missing sections fall back to the built-in defaults below, so the engine
also runs without a config file.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .models import SessionZone, StructureShiftOptions
from .sessions import DEFAULT_SESSION_ZONES
from .signal_engine import EngineOptions

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config.yaml'

DEFAULT_CONFIG: Dict[str, Any] = {
    'server': {
        'host': '0.0.0.0',
        'port': 8000,
        'log_level': 'info',
        'reload': False,
    },
    'sessions': [
        {'label': z.label, 'start_hour': z.start_hour, 'end_hour': z.end_hour,
         'kill_start_hour': z.kill_start_hour, 'kill_end_hour': z.kill_end_hour}
        for z in DEFAULT_SESSION_ZONES
    ],
    'engine': {
        'enforce_session_open_filter': False,
        'strict_sessions': False,
        'ui_signal_limit': None,
        'include_choch_fvg_ote': True,
        'swing_lookback': 2,
    },
    'structure': {
        'min_swing_distance': 2,
        'min_spacing_bars': 4,
        'min_break_pct': 0.00005,
    },
    'trade_memory': {
        'path': 'ict_trade_memory.json',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load ``path`` (default: config.yaml at the project root) over the
    built-in defaults.

    Raises:
        ValueError: the file is not a YAML mapping
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if path:
            raise ValueError(f"Configuration file not found at {config_path}")
        logger.info("No config.yaml found, using built-in defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, 'r') as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")
    return _merge(DEFAULT_CONFIG, loaded)


def session_zones(config: Dict[str, Any]) -> List[SessionZone]:
    """Session table from config; raises ValueError on malformed rows."""
    zones = []
    for row in config.get('sessions') or []:
        try:
            zone = SessionZone(
                label=str(row['label']),
                start_hour=int(row['start_hour']),
                end_hour=int(row['end_hour']),
                kill_start_hour=_optional_int(row.get('kill_start_hour')),
                kill_end_hour=_optional_int(row.get('kill_end_hour')),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid session row {row!r}: {e}") from e
        if not (0 <= zone.start_hour <= 24 and 0 <= zone.end_hour <= 24):
            raise ValueError(f"Session hours out of range for {zone.label}")
        zones.append(zone)
    return zones or list(DEFAULT_SESSION_ZONES)


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)


def engine_options(config: Dict[str, Any]) -> EngineOptions:
    engine = config.get('engine') or {}
    limit = engine.get('ui_signal_limit')
    return EngineOptions(
        enforce_session_open_filter=bool(engine.get('enforce_session_open_filter', False)),
        ui_signal_limit=int(limit) if limit else None,
        strict_sessions=bool(engine.get('strict_sessions', False)),
        include_choch_fvg_ote=bool(engine.get('include_choch_fvg_ote', True)),
    )


def structure_options(config: Dict[str, Any]) -> StructureShiftOptions:
    structure = config.get('structure') or {}
    return StructureShiftOptions(
        min_swing_distance=int(structure.get('min_swing_distance', 2)),
        min_spacing_bars=int(structure.get('min_spacing_bars', 4)),
        min_break_pct=float(structure.get('min_break_pct', 0.00005)),
    )


def swing_lookback(config: Dict[str, Any]) -> int:
    return int((config.get('engine') or {}).get('swing_lookback', 2))
