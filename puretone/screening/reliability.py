from __future__ import annotations
from typing import List, Optional, Sequence

FALSE_POSITIVE_PENALTY = 10
MIN_RESPONSES_FOR_LATENCY = 4
ANTICIPATION_LATENCY_MS = 150
ANTICIPATION_PENALTY = 10
INATTENTION_LATENCY_MS = 2500
INATTENTION_PENALTY = 5


class TelemetryLog:
    """Append-only reaction latencies of valid responses and a false positive count."""

    def __init__(self):
        self._latencies: List[float] = []
        self.false_positives = 0

    def add_latency(self, latency_ms: float) -> None:
        self._latencies.append(float(latency_ms))

    def add_false_positive(self) -> int:
        self.false_positives += 1
        return self.false_positives

    @property
    def latencies(self) -> tuple:
        return tuple(self._latencies)

    def mean_latency(self) -> Optional[float]:
        if not self._latencies:
            return None
        return sum(self._latencies) / len(self._latencies)


def latency_penalty(latencies: Sequence[float]) -> int:
    if len(latencies) < MIN_RESPONSES_FOR_LATENCY:
        return 0
    mean = sum(latencies) / len(latencies)
    if mean < ANTICIPATION_LATENCY_MS:
        return ANTICIPATION_PENALTY
    if mean > INATTENTION_LATENCY_MS:
        return INATTENTION_PENALTY
    return 0


def reliability_score(false_positives: int, latencies: Sequence[float], cap: Optional[int] = None) -> int:
    """0..100 score: minus 10 per false positive, minus a latency penalty.

    Very fast mean reactions suggest anticipation, very slow ones inattention;
    both only count once at least four valid responses exist. ``cap`` bounds
    the score when noise monitoring was unavailable.
    """
    score = 100 - FALSE_POSITIVE_PENALTY * int(false_positives) - latency_penalty(latencies)
    score = max(0, min(100, score))
    if cap is not None:
        score = min(score, max(0, int(cap)))
    return score


class ReliabilityScorer:
    def __init__(self, degraded_cap: int = 80):
        self.degraded_cap = degraded_cap

    def score(self, telemetry: TelemetryLog, noise_monitoring_degraded: bool = False) -> int:
        cap = self.degraded_cap if noise_monitoring_degraded else None
        return reliability_score(telemetry.false_positives, telemetry.latencies, cap=cap)
