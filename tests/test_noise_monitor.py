from __future__ import annotations

import numpy as np
import pytest

from conftest import FakeMicrophone
from puretone.audio.noise_monitor import AmbientNoiseMonitor, byte_spectrum, display_level
from puretone.errors import MicUnavailable


def test_display_level_scales_mean_bin_value():
    assert display_level(np.full(128, 28, dtype=np.uint8)) == 42
    assert display_level(np.zeros(128, dtype=np.uint8)) == 0
    assert display_level(np.array([], dtype=np.uint8)) == 0


def test_silence_maps_to_zero_bins():
    bins, smoothed = byte_spectrum(np.zeros(256))
    assert bins.shape == (128,)
    assert bins.dtype == np.uint8
    assert not np.any(bins)
    assert smoothed.shape == (128,)


def test_smoothing_carries_previous_block():
    loud = np.random.default_rng(1).normal(0, 0.3, 256)
    bins, smoothed = byte_spectrum(loud)
    quiet_bins, _ = byte_spectrum(np.zeros(256), smoothed)
    # 0.8 of the loud spectrum survives one silent block
    assert display_level(quiet_bins) > 0
    assert display_level(quiet_bins) < display_level(bins)


def test_quiet_and_loud_rooms(clock):
    quiet = AmbientNoiseMonitor(FakeMicrophone(amplitude=0.0), clock=clock)
    quiet.start(run_thread=False)
    reading = quiet.sample_once()
    assert reading.level == 0 and not reading.noisy
    quiet.stop()

    loud = AmbientNoiseMonitor(FakeMicrophone(amplitude=0.3), clock=clock)
    loud.start(run_thread=False)
    reading = loud.sample_once()
    assert reading.level > 40
    assert reading.noisy
    assert loud.is_noisy()
    assert loud.current_level() == reading.level
    assert loud.drain() == [reading]
    assert loud.drain() == []
    loud.stop()


def test_microphone_failure_marks_monitor_failed():
    mic = FakeMicrophone(fail=True)
    monitor = AmbientNoiseMonitor(mic)
    with pytest.raises(MicUnavailable):
        monitor.start()
    assert monitor.failed
    monitor.stop()
    assert mic.closed == 0


def test_background_thread_publishes_readings():
    mic = FakeMicrophone(amplitude=0.3)
    monitor = AmbientNoiseMonitor(mic, poll_interval_ms=10)
    monitor.start()
    try:
        reading = monitor.readings.get(timeout=2)
        assert reading.noisy
    finally:
        monitor.stop()
    monitor.stop()
    assert mic.closed == 1
    assert not mic.is_open


class _BrokenMicrophone(FakeMicrophone):
    def read(self, frames):
        raise OSError("device unplugged")


def test_sampling_error_stops_thread_and_flags_failure():
    monitor = AmbientNoiseMonitor(_BrokenMicrophone(), poll_interval_ms=5)
    monitor.start()
    worker = monitor._worker
    worker.join(timeout=2)
    assert not worker.is_alive()
    assert monitor.failed
    assert not monitor.is_noisy()
    monitor.stop()
