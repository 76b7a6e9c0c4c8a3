from __future__ import annotations

import logging
import random
from typing import Any, List, Tuple

import numpy as np
import pytest

from puretone.errors import AudioUnavailable, MicUnavailable
from puretone.screening.listener import SessionListener
from puretone.screening.session import start_session
from puretone.settings import default_settings


class FakeOutput:
    """In-memory stand-in for the host stereo output."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.callback = None
        self.sample_rate = None
        self.channels = None
        self.is_open = False
        self.opened = 0
        self.closed = 0

    def open(self, callback, sample_rate, channels=2) -> None:
        if self.fail:
            raise AudioUnavailable("no output device")
        self.callback = callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.is_open = True
        self.opened += 1

    def close(self) -> None:
        self.is_open = False
        self.closed += 1


class FakeMicrophone:
    """Microphone producing white noise of a settable amplitude."""

    def __init__(self, amplitude: float = 0.0, fail: bool = False, seed: int = 7) -> None:
        self.amplitude = amplitude
        self.fail = fail
        self.is_open = False
        self.opened = 0
        self.closed = 0
        self._rng = np.random.default_rng(seed)

    def open(self, sample_rate, block_size) -> None:
        if self.fail:
            raise MicUnavailable("permission denied")
        self.is_open = True
        self.opened += 1

    def read(self, frames):
        if self.amplitude <= 0:
            return np.zeros(frames, dtype=np.float32)
        return self._rng.normal(0.0, self.amplitude, frames).astype(np.float32)

    def close(self) -> None:
        self.is_open = False
        self.closed += 1


class ManualClock:
    """Millisecond clock advanced explicitly by the test."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FixedRandom(random.Random):
    """random() returns the queued values in order, then repeats the last one."""

    def __init__(self, *values: float) -> None:
        super().__init__(0)
        self._values = list(values) or [0.99]

    def random(self) -> float:
        if len(self._values) > 1:
            return self._values.pop(0)
        return self._values[0]


class RecordingListener(SessionListener):
    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    def _add(self, name, *args):
        self.events.append((name, args))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def on_step_started(self, step):
        self._add("step_started", step)

    def on_frequency_started(self, step, frequency):
        self._add("frequency_started", step, frequency)

    def on_level_changed(self, step, frequency, level_db):
        self._add("level_changed", level_db)

    def on_threshold_captured(self, record):
        self._add("threshold_captured", record)

    def on_false_positive(self, count):
        self._add("false_positive", count)

    def on_transition_pending(self, next_step):
        self._add("transition_pending", next_step)

    def on_noise_changed(self, level, noisy):
        self._add("noise_changed", level, noisy)

    def on_test_finished(self):
        self._add("test_finished")

    def on_cancelled(self):
        self._add("cancelled")

    def on_error(self, message):
        self._add("error", message)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def microphone():
    return FakeMicrophone()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def never_catch():
    return FixedRandom(0.99)


@pytest.fixture
def always_catch():
    return FixedRandom(0.0)


@pytest.fixture
def settings():
    return default_settings()


@pytest.fixture
def make_session(output, microphone, clock, listener, never_catch, settings):
    """Factory for sessions on fake devices with background sampling off."""

    def _make(identity_ref="PZ0001", mode="screening", **kwargs):
        params = dict(output=output, microphone=microphone, clock=clock, listener=listener,
                      rng=never_catch, settings=settings, background_sampling=False)
        params.update(kwargs)
        return start_session(identity_ref, mode, **params)

    return _make


@pytest.fixture
def restore_logging():
    yield
    log = logging.getLogger('puretone')
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.propagate = True
    log.setLevel(logging.NOTSET)
