from __future__ import annotations

import numpy as np
import pytest

from puretone.audio.playback import ToneSynthesizer
from puretone.screening.plan import Ear

SR = 8000   # 50 ms fade-in = 400 samples, 80 ms fade-out = 640 samples


@pytest.fixture
def synth(output, clock):
    s = ToneSynthesizer(output, sample_rate=SR, clock=clock)
    s.open()
    yield s
    s.close()


def test_open_registers_stereo_callback(synth, output):
    assert output.is_open
    assert output.sample_rate == SR
    assert output.channels == 2
    assert output.callback is not None


def test_close_is_idempotent(output, clock):
    s = ToneSynthesizer(output, sample_rate=SR, clock=clock)
    s.open()
    s.play(1000, 80, "R")
    s.close()
    s.close()
    assert output.closed == 1
    assert not s.is_playing


def test_right_ear_tone_only_on_right_channel(synth):
    synth.play(1000, 80, Ear.RIGHT)
    block = synth.render(800)
    assert block.shape == (800, 2)
    assert block.dtype == np.float32
    assert np.all(block[:, 0] == 0.0)
    # past the fade-in the peak is the full amplitude
    assert np.max(np.abs(block[400:, 1])) == pytest.approx(0.1, rel=1e-3)


def test_left_ear_tone_only_on_left_channel(synth):
    synth.play(1000, 80, "L")
    block = synth.render(800)
    assert np.all(block[:, 1] == 0.0)
    assert np.max(np.abs(block[:, 0])) > 0.05


def test_fade_in_starts_from_silence(synth):
    synth.play(1000, 100, "R")
    block = synth.render(400)
    assert abs(block[0, 1]) == 0.0
    assert np.max(np.abs(block[:40, 1])) < 0.11
    assert np.max(np.abs(block[360:, 1])) > 0.85


def test_catch_trial_is_silent_but_looks_like_a_tone(synth, clock):
    handle = synth.play(1000, 80, "R", is_catch_trial=True)
    assert handle.is_catch_trial
    assert synth.is_playing
    assert synth.current is handle
    assert not np.any(synth.render(800))


def test_stop_fades_out_then_goes_silent(synth, clock):
    handle = synth.play(1000, 80, "R")
    synth.render(800)
    clock.advance(250)
    synth.stop()
    assert handle.end_time == 250
    assert not synth.is_playing
    tail = synth.render(640)
    assert np.max(np.abs(tail[:8, 1])) > 0.05
    assert np.max(np.abs(tail[-64:, 1])) < 0.001
    assert not np.any(synth.render(100))


def test_stop_twice_keeps_first_end_time(synth, clock):
    handle = synth.play(1000, 80, "R")
    clock.advance(100)
    synth.stop(handle)
    clock.advance(100)
    synth.stop(handle)
    assert handle.end_time == 100


def test_new_tone_releases_previous(synth, clock):
    first = synth.play(500, 40, "R")
    clock.advance(300)
    second = synth.play(1000, 40, "L")
    assert first.end_time == 300
    assert second.active
    assert synth.current is second
    assert second.id != first.id


def test_calibration_offset_raises_amplitude(output, clock):
    s = ToneSynthesizer(output, sample_rate=SR, calibration={'L': {}, 'R': {1000: 10.0}}, clock=clock)
    assert s.amplitude_for(1000, 70, Ear.RIGHT) == pytest.approx(0.1)
    assert s.amplitude_for(1000, 70, Ear.LEFT) == pytest.approx(10 ** (-30 / 20))
    assert s.amplitude_for(2000, 70, Ear.RIGHT) == pytest.approx(10 ** (-30 / 20))
