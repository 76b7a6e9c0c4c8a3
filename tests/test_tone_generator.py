from __future__ import annotations

import numpy as np
import pytest

from puretone.audio.tone_generator import (
    fade_in_envelope, fade_out_envelope, level_to_amplitude, pan_gains, sine_block,
)


@pytest.mark.parametrize(
    "level, offset, expected",
    [(100, 0, 1.0), (80, 0, 0.1), (40, 0, 0.001), (70, 10, 0.1), (120, 0, 1.0)],
)
def test_level_to_amplitude(level, offset, expected):
    assert level_to_amplitude(level, offset) == pytest.approx(expected)


def test_sine_block_is_continuous_across_blocks():
    whole = sine_block(1000, 0, 64, 8000)
    joined = np.concatenate([sine_block(1000, 0, 32, 8000), sine_block(1000, 32, 32, 8000)])
    assert np.allclose(whole, joined, atol=1e-6)
    # 8 samples per period at 1 kHz / 8 kHz
    assert whole[2] == pytest.approx(1.0, abs=1e-6)


def test_fade_in_is_linear_then_flat():
    env = fade_in_envelope(0, 8, 4)
    assert env.tolist() == pytest.approx([0.0, 0.25, 0.5, 0.75, 1.0, 1.0, 1.0, 1.0])
    assert fade_in_envelope(0, 3, 0).tolist() == [1.0, 1.0, 1.0]


def test_fade_out_decays_to_silence():
    env = fade_out_envelope(0, 12, 10)
    assert env[0] == pytest.approx(1.0)
    assert env[5] == pytest.approx(1e-2, rel=1e-3)
    assert np.all(np.diff(env[:10]) < 0)
    assert env[10:].tolist() == [0.0, 0.0]


@pytest.mark.parametrize("pan, gains", [(-1.0, (1.0, 0.0)), (1.0, (0.0, 1.0)), (0.0, (0.5, 0.5)), (3.0, (0.0, 1.0))])
def test_pan_gains(pan, gains):
    assert pan_gains(pan) == pytest.approx(gains)
