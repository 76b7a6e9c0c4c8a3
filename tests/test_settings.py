from __future__ import annotations

import json

import pytest

from puretone.errors import SettingsError
from puretone.settings import default_settings, load_settings, save_settings


def test_missing_file_gives_defaults(tmp_path):
    assert load_settings(tmp_path / "nope.json") == default_settings()
    assert load_settings(None) == default_settings()


def test_json_values_override_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"noise_threshold": 55, "calibration": {"OD": {"1000": -5}}}), encoding="utf-8")
    settings = load_settings(path)
    assert settings["noise_threshold"] == 55
    assert settings["grace_period_ms"] == 3500
    assert settings["calibration"] == {"L": {}, "R": {1000: -5.0}}


def test_yaml_settings(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "catch_trial_probability: 0.2\n"
        "calibration:\n"
        "  left:\n"
        "    500: 2.5\n"
        "    '4000': -1\n",
        encoding="utf-8",
    )
    settings = load_settings(path)
    assert settings["catch_trial_probability"] == 0.2
    assert settings["calibration"]["L"] == {500: 2.5, 4000: -1.0}


def test_empty_yaml_is_defaults(tmp_path):
    path = tmp_path / "settings.yml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == default_settings()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps([1, 2, 3]),
        json.dumps({"catch_trial_probability": 1.5}),
        json.dumps({"sample_rate": "fast"}),
        json.dumps({"noise_block_size": 0}),
        json.dumps({"grace_period_ms": True}),
        json.dumps({"calibration": {"middle": {"500": 1}}}),
        json.dumps({"calibration": {"L": {"500": "loud"}}}),
    ],
)
def test_invalid_settings_are_rejected(tmp_path, content):
    path = tmp_path / "settings.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SettingsError):
        load_settings(path)


def test_save_then_load(tmp_path):
    settings = default_settings()
    settings["noise_threshold"] = 35
    settings["calibration"] = {"L": {250: 1.5}, "R": {8000: -2.0}}
    path = tmp_path / "nested" / "settings.json"
    save_settings(path, settings)
    assert not (tmp_path / "nested" / "settings.json.tmp").exists()
    assert load_settings(path) == settings
