import numpy as np

FADE_OUT_FLOOR = 1e-4


def level_to_amplitude(level_db, offset_db=0.0, reference_db=100.0):
    """dB HL (plus calibration offset) to linear amplitude, reference_db = full scale."""
    amp = 10 ** ((float(level_db) + float(offset_db) - float(reference_db)) / 20.0)
    if amp < 0.0:
        amp = 0.0
    if amp > 1.0:
        amp = 1.0
    return float(amp)


def sine_block(freq_hz, start_sample, frames, sample_rate):
    n = np.arange(start_sample, start_sample + frames, dtype=np.float64)
    return np.sin(2 * np.pi * freq_hz * n / sample_rate).astype(np.float32)


def fade_in_envelope(start_sample, frames, fade_samples):
    # linear 0 -> 1 over fade_samples, then flat
    n = np.arange(start_sample, start_sample + frames, dtype=np.float32)
    if fade_samples <= 0:
        return np.ones(frames, dtype=np.float32)
    return np.clip(n / float(fade_samples), 0.0, 1.0).astype(np.float32)


def fade_out_envelope(start_sample, frames, fade_samples, floor=FADE_OUT_FLOOR):
    # exponential 1 -> floor over fade_samples, silence afterwards
    n = np.arange(start_sample, start_sample + frames, dtype=np.float32)
    if fade_samples <= 0:
        return np.zeros(frames, dtype=np.float32)
    env = np.power(np.float32(floor), n / float(fade_samples)).astype(np.float32)
    env[n >= fade_samples] = 0.0
    return env


def pan_gains(pan):
    """Channel gains (left, right) for a pan position in [-1, 1]."""
    pan = max(-1.0, min(1.0, float(pan)))
    return (1.0 - pan) / 2.0, (1.0 + pan) / 2.0
