from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import queue
import threading

import numpy as np

from ..errors import MicUnavailable
from .playback import monotonic_ms

logger = logging.getLogger('puretone.noise')

NOISE_THRESHOLD = 40
NOISE_CHECK_INTERVAL_MS = 200
FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
SMOOTHING = 0.8
LEVEL_SCALE = 1.5


@dataclass(frozen=True)
class NoiseReading:
    level: int
    noisy: bool
    timestamp: float


def byte_spectrum(block: np.ndarray, previous: Optional[np.ndarray] = None,
                  smoothing: float = SMOOTHING) -> tuple[np.ndarray, np.ndarray]:
    """Smoothed magnitude spectrum of one block mapped to 0..255 per bin.

    Returns ``(bytes, smoothed)``; pass ``smoothed`` back as ``previous`` on the
    next call to carry the exponential smoothing across blocks.
    """
    block = np.asarray(block, dtype=np.float64)
    n = FFT_SIZE
    if block.size < n:
        block = np.pad(block, (0, n - block.size))
    else:
        block = block[-n:]
    window = np.blackman(n)
    magnitude = np.abs(np.fft.rfft(block * window))[: n // 2] / n
    if previous is not None and previous.shape == magnitude.shape:
        magnitude = smoothing * previous + (1.0 - smoothing) * magnitude
    with np.errstate(divide='ignore'):
        db = 20.0 * np.log10(magnitude)
    scaled = 255.0 * (db - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
    return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8), magnitude


def display_level(bins: np.ndarray) -> int:
    """Average bin value scaled to the integer noise level shown to the operator."""
    if bins.size == 0:
        return 0
    return int(round(float(np.mean(bins)) * LEVEL_SCALE))


class AmbientNoiseMonitor:
    """Samples the microphone on a timer and publishes the ambient noise level.

    The sampling thread is the only writer of the level; readers use
    ``current_level``/``is_noisy`` or drain the ``readings`` queue. Polling
    continues whether or not a tone is playing.
    """

    def __init__(self, microphone, threshold: int = NOISE_THRESHOLD,
                 poll_interval_ms: float = NOISE_CHECK_INTERVAL_MS, block_size: int = FFT_SIZE,
                 sample_rate: int = 48000, clock: Callable[[], float] = monotonic_ms):
        self.microphone = microphone
        self.threshold = int(threshold)
        self.poll_interval_ms = float(poll_interval_ms)
        self.block_size = int(block_size)
        self.sample_rate = int(sample_rate)
        self.clock = clock
        self.readings: "queue.Queue[NoiseReading]" = queue.Queue()
        self.failed = False
        self._lock = threading.Lock()
        self._level = 0
        self._noisy = False
        self._smoothed: Optional[np.ndarray] = None
        self._stop_evt = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._started = False

    def start(self, run_thread: bool = True) -> None:
        """Acquire the microphone and begin polling. Raises MicUnavailable."""
        if self._started:
            return
        try:
            self.microphone.open(self.sample_rate, self.block_size)
        except MicUnavailable:
            self.failed = True
            raise
        except Exception as exc:
            self.failed = True
            raise MicUnavailable(str(exc)) from exc
        self._started = True
        self._stop_evt.clear()
        logger.info("Ambient noise monitoring started (threshold %d)", self.threshold)
        if run_thread:
            self._worker = threading.Thread(target=self._run, name="noise-monitor", daemon=True)
            self._worker.start()

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._stop_evt.set()
        worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=max(1.0, 2 * self.poll_interval_ms / 1000.0))
        self.microphone.close()
        logger.info("Ambient noise monitoring stopped")

    def current_level(self) -> int:
        with self._lock:
            return self._level

    def is_noisy(self) -> bool:
        with self._lock:
            return self._noisy

    def sample_once(self) -> NoiseReading:
        block = self.microphone.read(self.block_size)
        bins, self._smoothed = byte_spectrum(block, self._smoothed)
        level = display_level(bins)
        noisy = level > self.threshold
        with self._lock:
            self._level = level
            self._noisy = noisy
        reading = NoiseReading(level, noisy, self.clock())
        self.readings.put(reading)
        return reading

    def drain(self) -> List[NoiseReading]:
        out: List[NoiseReading] = []
        while True:
            try:
                out.append(self.readings.get_nowait())
            except queue.Empty:
                return out

    def _run(self) -> None:
        interval = self.poll_interval_ms / 1000.0
        while not self._stop_evt.wait(interval):
            try:
                self.sample_once()
            except Exception:
                logger.exception("Ambient noise sampling failed; monitoring disabled")
                self.failed = True
                with self._lock:
                    self._noisy = False
                return
