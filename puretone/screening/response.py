from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

GRACE_PERIOD_MS = 3500


class OutcomeKind(str, Enum):
    VALID = "valid"
    FALSE_POSITIVE = "false_positive"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ResponseOutcome:
    kind: OutcomeKind
    latency_ms: Optional[float] = None

    @classmethod
    def valid(cls, latency_ms: float) -> "ResponseOutcome":
        return cls(OutcomeKind.VALID, float(latency_ms))

    @property
    def is_valid(self) -> bool:
        return self.kind is OutcomeKind.VALID

    @property
    def counts_as_false_positive(self) -> bool:
        # a click with no stimulus in range is penalised like a catch-trial click
        return self.kind is not OutcomeKind.VALID


FALSE_POSITIVE = ResponseOutcome(OutcomeKind.FALSE_POSITIVE)
IGNORED = ResponseOutcome(OutcomeKind.IGNORED)


class ResponseEvaluator:
    """Classify a "heard" press against the most recent tone.

    The grace window accepts clicks that land shortly after the tone ended,
    since a subject's reaction lags the stimulus. The most recent tone governs
    the window: a click after a catch trial is a false positive even when a
    real tone finished just before that catch trial.
    """

    def __init__(self, grace_period_ms: float = GRACE_PERIOD_MS):
        self.grace_period_ms = float(grace_period_ms)

    def evaluate_heard(self, now: float, tone_start: Optional[float], tone_end: Optional[float],
                       is_playing: bool, was_catch_trial: bool) -> ResponseOutcome:
        if tone_start is None:
            return IGNORED
        within_grace = tone_end is not None and (now - tone_end) < self.grace_period_ms
        if was_catch_trial and (is_playing or within_grace):
            return FALSE_POSITIVE
        if not was_catch_trial and (is_playing or within_grace):
            return ResponseOutcome.valid(now - tone_start)
        return IGNORED

    def evaluate_not_heard(self) -> bool:
        """Always ask for a louder tone; silence never counts against the subject."""
        return True
