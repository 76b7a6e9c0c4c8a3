from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import itertools
import logging
import threading
import time

import numpy as np

from ..screening.plan import Ear
from .tone_generator import fade_in_envelope, fade_out_envelope, level_to_amplitude, pan_gains, sine_block

logger = logging.getLogger('puretone.audio')

_handle_ids = itertools.count(1)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(eq=False)
class ToneHandle:
    """Caller-side view of one tone. Catch trials look exactly like real tones."""

    frequency_hz: float
    level_db: float
    ear: Ear
    is_catch_trial: bool
    start_time: float
    end_time: Optional[float] = None
    id: int = field(default_factory=lambda: next(_handle_ids))

    @property
    def active(self) -> bool:
        return self.end_time is None


class _Voice:
    def __init__(self, handle: ToneHandle, amplitude: float, fade_in: int):
        self.handle = handle
        self.amplitude = amplitude
        self.left, self.right = pan_gains(handle.ear.pan)
        self.fade_in = fade_in
        self.position = 0
        self.release_at: Optional[int] = None
        self.release_gain = 1.0
        self.fade_out = 0

    def release(self, fade_out: int) -> None:
        if self.release_at is not None:
            return
        self.release_at = self.position
        self.release_gain = float(fade_in_envelope(self.position, 1, self.fade_in)[0])
        self.fade_out = fade_out

    def finished(self) -> bool:
        return self.release_at is not None and self.position - self.release_at >= self.fade_out


class ToneSynthesizer:
    """Continuous sine tones rendered block by block into a stereo output stream.

    Only one tone is active at a time: ``play`` releases the previous tone
    before starting the new one. A released tone fades out exponentially
    instead of being cut, a new tone fades in linearly, so neither edge clicks.
    The output device is opened by ``open`` and released by ``close``.
    """

    channels = 2

    def __init__(self, output, sample_rate: int = 48000, fade_in_ms: float = 50, fade_out_ms: float = 80,
                 reference_level_db: float = 100.0, calibration: Optional[Dict[str, Dict[int, float]]] = None,
                 clock: Callable[[], float] = monotonic_ms):
        self.output = output
        self.sample_rate = int(sample_rate)
        self.fade_in_samples = int(self.sample_rate * fade_in_ms / 1000.0)
        self.fade_out_samples = int(self.sample_rate * fade_out_ms / 1000.0)
        self.reference_level_db = float(reference_level_db)
        self.calibration = calibration or {'L': {}, 'R': {}}
        self.clock = clock
        self._lock = threading.Lock()
        self._voices: List[_Voice] = []
        self._current: Optional[ToneHandle] = None
        self._open = False

    # ---- resource scope ----
    def open(self) -> None:
        if self._open:
            return
        self.output.open(self._callback, self.sample_rate, self.channels)
        self._open = True
        logger.debug("Output stream open at %d Hz", self.sample_rate)

    def close(self) -> None:
        self.stop()
        if not self._open:
            return
        self._open = False
        with self._lock:
            self._voices = []
        self.output.close()
        logger.debug("Output stream closed")

    # ---- tone control ----
    @property
    def current(self) -> Optional[ToneHandle]:
        return self._current

    @property
    def is_playing(self) -> bool:
        return self._current is not None and self._current.active

    def amplitude_for(self, frequency_hz: float, level_db: float, ear: Ear) -> float:
        offset = float((self.calibration.get(ear.value) or {}).get(int(frequency_hz), 0.0))
        return level_to_amplitude(level_db, offset, self.reference_level_db)

    def play(self, frequency_hz: float, level_db: float, ear, is_catch_trial: bool = False) -> ToneHandle:
        ear = Ear.parse(ear)
        self.stop()
        amplitude = 0.0 if is_catch_trial else self.amplitude_for(frequency_hz, level_db, ear)
        handle = ToneHandle(float(frequency_hz), float(level_db), ear, bool(is_catch_trial), self.clock())
        with self._lock:
            self._voices.append(_Voice(handle, amplitude, self.fade_in_samples))
        self._current = handle
        logger.debug("Tone #%d start %.0f Hz %s dB ear=%s", handle.id, frequency_hz, level_db, ear.value)
        return handle

    def stop(self, handle: Optional[ToneHandle] = None) -> None:
        """Release ``handle`` (default: the current tone). Stopping twice is a no-op."""
        target = handle or self._current
        if target is None or not target.active:
            return
        target.end_time = self.clock()
        with self._lock:
            for voice in self._voices:
                if voice.handle is target:
                    voice.release(self.fade_out_samples)
        if target is self._current:
            self._current = None
        logger.debug("Tone #%d stop after %.0f ms", target.id, target.end_time - target.start_time)

    # ---- rendering ----
    def render(self, frames: int) -> np.ndarray:
        out = np.zeros((frames, self.channels), dtype=np.float32)
        with self._lock:
            for voice in self._voices:
                if voice.amplitude > 0.0:
                    wave = sine_block(voice.handle.frequency_hz, voice.position, frames, self.sample_rate)
                    if voice.release_at is None:
                        env = fade_in_envelope(voice.position, frames, voice.fade_in)
                    else:
                        env = voice.release_gain * fade_out_envelope(
                            voice.position - voice.release_at, frames, voice.fade_out)
                    mono = wave * env * voice.amplitude
                    out[:, 0] += mono * voice.left
                    out[:, 1] += mono * voice.right
                voice.position += frames
            self._voices = [v for v in self._voices if not v.finished()]
        return out

    def _callback(self, outdata, frames, _time, status) -> None:  # pragma: no cover
        if status:
            logger.debug("Output stream status: %s", status)
        outdata[:] = self.render(frames)
