from __future__ import annotations
from typing import Dict, List, Optional
import logging

import numpy as np

from ..errors import AudioUnavailable, MicUnavailable

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing on the host
    sd = None

logger = logging.getLogger('puretone.audio')


def _device_list(direction: str) -> List[Dict[str, object]]:
    devices: List[Dict[str, object]] = []
    if sd is None:
        return devices
    key = "max_output_channels" if direction == "output" else "max_input_channels"
    try:
        default_idx = sd.default.device[1 if direction == "output" else 0]
    except Exception:
        default_idx = None
    try:
        hostapis = sd.query_hostapis()
        infos = sd.query_devices()
    except Exception as exc:
        logger.warning("Cannot query audio devices: %s", exc)
        return devices
    for idx, info in enumerate(infos):
        if info.get(key, 0) <= 0:
            continue
        hostapi_idx = info.get("hostapi")
        host_name = hostapis[hostapi_idx]["name"] if hostapis and hostapi_idx is not None else ""
        devices.append(
            {
                "name": info.get("name", f"Device {idx}"),
                "host_api": host_name,
                "channels": info.get(key, 0),
                "sample_rate": info.get("default_samplerate", 48000),
                "index": idx,
                "is_default": default_idx == idx,
            }
        )
    return devices


def list_output_devices() -> List[Dict[str, object]]:
    """Output devices able to play audio, as dicts for display."""
    return _device_list("output")


def list_input_devices() -> List[Dict[str, object]]:
    return _device_list("input")


class SoundDeviceOutput:
    """Stereo output stream driven by a render callback; owned by one session."""

    def __init__(self, device: Optional[int | str] = None, blocksize: int = 256, latency: str = 'low'):
        self.device = device
        self.blocksize = blocksize
        self.latency = latency
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self, callback, sample_rate: int, channels: int = 2) -> None:
        if sd is None:
            raise AudioUnavailable("sounddevice/PortAudio not available: cannot play tones.")
        if self._stream is not None:
            return
        kwargs = {
            'samplerate': int(sample_rate),
            'channels': int(channels),
            'dtype': 'float32',
            'callback': callback,
            'blocksize': self.blocksize,
            'latency': self.latency,
        }
        if self.device is not None:
            kwargs['device'] = self.device
        try:
            stream = sd.OutputStream(**kwargs)
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise AudioUnavailable(f"Cannot open audio output {self.device!r}: {exc}") from exc
        self._stream = stream

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class SoundDeviceInput:
    """Mono input stream read in blocks by the ambient noise monitor."""

    def __init__(self, device: Optional[int | str] = None):
        self.device = device
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self, sample_rate: int, block_size: int) -> None:
        if sd is None:
            raise MicUnavailable("sounddevice/PortAudio not available: cannot sample ambient noise.")
        if self._stream is not None:
            return
        kwargs = {'samplerate': int(sample_rate), 'channels': 1, 'dtype': 'float32', 'blocksize': int(block_size)}
        if self.device is not None:
            kwargs['device'] = self.device
        try:
            stream = sd.InputStream(**kwargs)
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise MicUnavailable(f"Cannot open microphone {self.device!r}: {exc}") from exc
        self._stream = stream

    def read(self, frames: int) -> np.ndarray:
        if self._stream is None:
            raise MicUnavailable("Microphone is not open.")
        data, overflowed = self._stream.read(int(frames))
        if overflowed:
            logger.debug("Input overflow while sampling ambient noise")
        return np.asarray(data, dtype=np.float32)[:, 0]

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
