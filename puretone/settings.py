from __future__ import annotations
from typing import Any, Dict
from pathlib import Path
import copy
import json
import os

import yaml

from .errors import SettingsError

_NUMERIC_KEYS = (
    'sample_rate',
    'tone_fade_in_ms',
    'tone_fade_out_ms',
    'reference_level_db',
    'catch_trial_probability',
    'grace_period_ms',
    'noise_threshold',
    'noise_poll_interval_ms',
    'noise_block_size',
    'degraded_reliability_cap',
)


def default_settings() -> Dict[str, Any]:
    return {
        'sample_rate': 48000,
        'tone_fade_in_ms': 50,
        'tone_fade_out_ms': 80,
        'reference_level_db': 100.0,
        'catch_trial_probability': 0.1,
        'grace_period_ms': 3500,
        'noise_threshold': 40,
        'noise_poll_interval_ms': 200,
        'noise_block_size': 256,
        'degraded_reliability_cap': 80,
        'calibration': {'L': {}, 'R': {}},
        'output_device': None,
        'input_device': None,
    }


def _load_raw(path: Path) -> Dict[str, Any]:
    ext = path.suffix.lower()
    try:
        with path.open('r', encoding='utf-8') as handle:
            if ext in {'.yaml', '.yml'}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SettingsError(f"Settings file {path} is not valid: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError('Settings must be a mapping of key -> value.')
    return data


def _normalise_calibration(raw: Any) -> Dict[str, Dict[int, float]]:
    if raw is None:
        return {'L': {}, 'R': {}}
    if not isinstance(raw, dict):
        raise SettingsError("'calibration' must map ear -> {frequency: offset_db}.")
    aliases = {'L': 'L', 'LEFT': 'L', 'OS': 'L', 'R': 'R', 'RIGHT': 'R', 'OD': 'R'}
    out: Dict[str, Dict[int, float]] = {'L': {}, 'R': {}}
    for key, ear_map in raw.items():
        ear = aliases.get(str(key).strip().upper())
        if ear is None:
            raise SettingsError(f"Unknown ear in calibration: {key!r}.")
        if not isinstance(ear_map, dict):
            raise SettingsError(f"Calibration for ear {key!r} must be a mapping.")
        for freq_key, value in ear_map.items():
            try:
                out[ear][int(float(freq_key))] = float(value)
            except (TypeError, ValueError) as exc:
                raise SettingsError(f"Invalid calibration entry {freq_key!r}: {value!r}.") from exc
    return out


def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    for key in _NUMERIC_KEYS:
        value = settings.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SettingsError(f"'{key}' must be numeric, got {value!r}.")
    if not 0.0 <= float(settings['catch_trial_probability']) <= 1.0:
        raise SettingsError("'catch_trial_probability' must be between 0 and 1.")
    for key in ('sample_rate', 'noise_poll_interval_ms', 'noise_block_size'):
        if settings[key] <= 0:
            raise SettingsError(f"'{key}' must be positive.")
    settings['calibration'] = _normalise_calibration(settings.get('calibration'))
    return settings


def load_settings(path: str | os.PathLike | None = None) -> Dict[str, Any]:
    """Load engine settings from a .json/.yaml file, merged over the defaults.

    A missing file yields the defaults unchanged.
    """
    settings = default_settings()
    if path is None or not os.path.exists(path):
        return settings
    data = _load_raw(Path(path))
    for key, value in data.items():
        settings[key] = copy.deepcopy(value)
    return validate_settings(settings)


def save_settings(path: str | os.PathLike, settings: Dict[str, Any]) -> None:
    folder = os.path.dirname(os.fspath(path))
    if folder:
        os.makedirs(folder, exist_ok=True)
    serialisable = dict(settings)
    calibration = settings.get('calibration') or {}
    serialisable['calibration'] = {
        ear: {str(f): v for f, v in (calibration.get(ear) or {}).items()} for ear in ('L', 'R')
    }
    tmp_path = f"{os.fspath(path)}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as handle:
        json.dump(serialisable, handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)
