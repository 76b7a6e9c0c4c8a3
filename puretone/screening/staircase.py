from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging
import random

from ..errors import InvalidStep, NoiseGateClosed, SessionStateError
from .listener import SessionListener
from .plan import DB_STEP, MAX_DB, MIN_DB, ResponseRecord, TestPlan, TestStep, ToneRequest
from .reliability import TelemetryLog
from .response import ResponseOutcome
from .results import ResultsStore

logger = logging.getLogger('puretone.session')


class Phase(str, Enum):
    AWAITING_RESPONSE = "awaiting_response"
    TRANSITION_PENDING = "transition_pending"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SessionState:
    phase: Phase
    step_index: int
    freq_index: int
    db: int
    pending_step_index: Optional[int] = None


class StaircaseController:
    """Ascending staircase over every step of the plan.

    Each (step, frequency) pair starts at MIN_DB and climbs by DB_STEP on every
    "not heard" until a valid "heard" records the threshold. A "not heard" at
    MAX_DB records MAX_DB as the threshold and moves on. When a step runs out
    of frequencies the controller waits in TRANSITION_PENDING until the caller
    acknowledges the change of ear or masking state.

    All session state (position, level, thresholds, telemetry, noise gate) is
    owned here and changes only through the event methods below.
    """

    def __init__(self, plan: TestPlan, rng: Optional[random.Random] = None,
                 catch_trial_probability: float = 0.1, noise_threshold: int = 40,
                 listener: Optional[SessionListener] = None):
        self.plan = plan
        self.results = ResultsStore()
        self.telemetry = TelemetryLog()
        self.ui = listener or SessionListener()
        self._rng = rng or random.Random()
        self.catch_trial_probability = float(catch_trial_probability)
        self.noise_threshold = int(noise_threshold)

        self.phase = Phase.AWAITING_RESPONSE
        self.step_index = 0
        self.freq_index = 0
        self.db = MIN_DB
        self._pending_step: Optional[int] = None
        self.active_request: Optional[ToneRequest] = None

        self.noise_level = 0
        self.noisy = False

    # ---------------- State ----------------
    @property
    def current_step(self) -> TestStep:
        return self.plan.steps[self.step_index]

    @property
    def current_frequency(self) -> int:
        return int(self.plan.frequencies[self.freq_index])

    @property
    def state(self) -> SessionState:
        return SessionState(self.phase, self.step_index, self.freq_index, self.db, self._pending_step)

    @property
    def is_complete(self) -> bool:
        return self.phase is Phase.COMPLETE

    @property
    def is_blocked(self) -> bool:
        return self.noisy

    def _require_awaiting(self, action: str) -> None:
        if self.phase is not Phase.AWAITING_RESPONSE:
            raise SessionStateError(f"Cannot {action} while session is {self.phase.value}.")

    # ---------------- Events ----------------
    def on_noise_level(self, level: int, noisy: bool) -> None:
        changed = bool(noisy) != self.noisy
        self.noise_level = int(level)
        self.noisy = bool(noisy)
        if changed:
            if self.noisy:
                logger.warning("Ambient noise above threshold (level %d): testing paused", self.noise_level)
            else:
                logger.info("Ambient noise back below threshold (level %d)", self.noise_level)
            self.ui.on_noise_changed(self.noise_level, self.noisy)

    def request_tone(self) -> ToneRequest:
        """Build the next tone for the active pair, drawing the catch-trial flag now."""
        self._require_awaiting("play a tone")
        if self.noisy:
            raise NoiseGateClosed(self.noise_level, self.noise_threshold)
        is_catch = self._rng.random() < self.catch_trial_probability
        request = ToneRequest(frequency=self.current_frequency, level_db=self.db,
                              ear=self.current_step.ear, is_catch_trial=is_catch)
        self.active_request = request
        return request

    def on_heard(self, outcome: ResponseOutcome) -> Optional[ResponseRecord]:
        self._require_awaiting("register a response")
        if outcome.counts_as_false_positive:
            count = self.telemetry.add_false_positive()
            logger.warning("False positive (%s) at %s, %d Hz; total %d",
                           outcome.kind.value, self.current_step.label(), self.current_frequency, count)
            self.ui.on_false_positive(count)
            return None
        self.telemetry.add_latency(outcome.latency_ms)
        level = self.active_request.level_db if self.active_request is not None else self.db
        return self._record_and_advance(level)

    def on_not_heard(self) -> Optional[ResponseRecord]:
        """Raise the level one step; at the ceiling record it and move on.

        The last tone request stays active, so a late click inside its grace
        window still counts for the level that tone was played at.
        """
        self._require_awaiting("register a response")
        if self.db >= MAX_DB:
            logger.info("Ceiling reached at %s, %d Hz", self.current_step.label(), self.current_frequency)
            return self._record_and_advance(MAX_DB)
        self.db = min(self.db + DB_STEP, MAX_DB)
        self.ui.on_level_changed(self.current_step, self.current_frequency, self.db)
        return None

    def acknowledge_transition(self) -> None:
        if self.phase is not Phase.TRANSITION_PENDING:
            raise SessionStateError("No step transition is pending.")
        self._enter_step(self._pending_step)

    def jump_to(self, ear, masking, frequency: Optional[int] = None) -> None:
        """Move to an ear/masking step of the plan, optionally to one frequency.

        A step without thresholds starts from its first frequency; a step with
        thresholds resumes at its first frequency still missing one. Passing
        ``frequency`` re-tests that frequency from MIN_DB.
        """
        try:
            index = self.plan.index_of(ear, masking)
        except ValueError as exc:
            raise InvalidStep(str(exc)) from exc
        if index is None:
            raise InvalidStep(f"Step {ear}/{masking} is not part of the test plan.")
        freq_index = None
        if frequency is not None:
            if int(frequency) not in self.plan.frequencies:
                raise InvalidStep(f"{frequency} Hz is not part of the {self.plan.mode.value} frequency set.")
            freq_index = self.plan.frequencies.index(int(frequency))
        if self.phase in (Phase.COMPLETE, Phase.CANCELLED):
            raise SessionStateError(f"Cannot navigate once the session is {self.phase.value}.")
        logger.info("Jump to %s", self.plan.steps[index].label())
        self._enter_step(index, freq_index)

    def cancel(self) -> None:
        if self.phase is Phase.CANCELLED:
            return
        self.phase = Phase.CANCELLED
        self.active_request = None
        self._pending_step = None
        self.ui.on_cancelled()

    # ---------------- Progression ----------------
    def _missing(self, step_index: int, freq_index: int) -> bool:
        step = self.plan.steps[step_index]
        return not self.results.has_result(step, self.plan.frequencies[freq_index])

    def _first_missing_frequency(self, step_index: int) -> Optional[int]:
        for i in range(len(self.plan.frequencies)):
            if self._missing(step_index, i):
                return i
        return None

    def _next_missing_frequency(self) -> Optional[int]:
        count = len(self.plan.frequencies)
        for offset in range(1, count + 1):
            i = (self.freq_index + offset) % count
            if self._missing(self.step_index, i):
                return i
        return None

    def _next_incomplete_step(self) -> Optional[int]:
        count = len(self.plan.steps)
        for offset in range(1, count + 1):
            i = (self.step_index + offset) % count
            if self._first_missing_frequency(i) is not None:
                return i
        return None

    def _enter_step(self, step_index: int, freq_index: Optional[int] = None) -> None:
        if freq_index is None:
            freq_index = self._first_missing_frequency(step_index)
            if freq_index is None:
                freq_index = 0
        changed_step = step_index != self.step_index or self.phase is Phase.TRANSITION_PENDING
        self.step_index = step_index
        self.freq_index = freq_index
        self.db = MIN_DB
        self.phase = Phase.AWAITING_RESPONSE
        self._pending_step = None
        self.active_request = None
        if changed_step:
            self.ui.on_step_started(self.current_step)
        self.ui.on_frequency_started(self.current_step, self.current_frequency)

    def _record_and_advance(self, level: int) -> ResponseRecord:
        record = self.results.add_result(self.current_step, self.current_frequency, level)
        logger.info("Threshold %s, %d Hz: %d dB HL", self.current_step.label(), record.frequency, record.threshold_db)
        self.ui.on_threshold_captured(record)
        self.active_request = None

        next_freq = self._next_missing_frequency()
        if next_freq is not None:
            self.freq_index = next_freq
            self.db = MIN_DB
            self.ui.on_frequency_started(self.current_step, self.current_frequency)
            return record

        next_step = self._next_incomplete_step()
        if next_step is None:
            self.phase = Phase.COMPLETE
            logger.info("All %d thresholds captured", len(self.results))
            self.ui.on_test_finished()
            return record

        self.phase = Phase.TRANSITION_PENDING
        self._pending_step = next_step
        self.ui.on_transition_pending(self.plan.steps[next_step])
        return record
