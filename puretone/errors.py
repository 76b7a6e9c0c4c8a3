from __future__ import annotations


class ScreeningError(Exception):
    """Base class for every error raised by the screening engine."""


class AudioUnavailable(ScreeningError):
    """The audio output device could not be opened; no session is created."""


class MicUnavailable(ScreeningError):
    """The input device for ambient noise sampling could not be acquired."""


class InvalidStep(ScreeningError, ValueError):
    """Navigation to an ear/masking/frequency combination not in the plan."""


class NoiseGateClosed(ScreeningError):
    """A tone was requested while the ambient noise level is above threshold."""

    def __init__(self, level: int, threshold: int):
        super().__init__(f"Ambient noise too high: level {level} > {threshold}. Retry when quiet.")
        self.level = level
        self.threshold = threshold


class SessionStateError(ScreeningError):
    """The requested operation is not valid in the current session state."""


class FinalizeFailed(ScreeningError):
    """The result recorder rejected the finished audiogram."""

    def __init__(self, reason: str):
        super().__init__(f"Finalize failed: {reason}")
        self.reason = reason


class SettingsError(ScreeningError, ValueError):
    """Settings file missing required structure or holding invalid values."""
