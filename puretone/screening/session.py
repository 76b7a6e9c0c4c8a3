from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
import logging
import random

from ..analysis import AudiogramClassifier
from ..audio.devices import SoundDeviceInput, SoundDeviceOutput
from ..audio.noise_monitor import AmbientNoiseMonitor
from ..audio.playback import ToneHandle, ToneSynthesizer, monotonic_ms
from ..errors import FinalizeFailed, MicUnavailable, SessionStateError
from ..settings import default_settings
from .listener import SessionListener
from .plan import Masking, Mode, ResponseRecord, TestPlan, TestStep
from .reliability import ReliabilityScorer
from .response import ResponseEvaluator, ResponseOutcome
from .staircase import Phase, SessionState, StaircaseController

logger = logging.getLogger('puretone.session')

Recorder = Callable[["AudiogramResult"], Any]


def format_duration(seconds: int) -> str:
    return f"{seconds // 60} min {seconds % 60} sec"


@dataclass(frozen=True)
class AudiogramResult:
    """Finished audiogram handed to the recorder. Built once, never modified.

    ``left``/``right`` hold the unmasked thresholds (frequency -> dB HL);
    ``records`` keeps every captured threshold, masked steps included.
    """

    identity_ref: Optional[str]
    mode: Mode
    left: Mapping[int, int]
    right: Mapping[int, int]
    reliability_score: int
    duration_seconds: int
    classification_grade: str
    grade: Optional[int]
    pattern: str
    asymmetry_flag: bool
    left_pta: float
    right_pta: float
    summary: str
    recommendations: Tuple[str, ...]
    records: Tuple[ResponseRecord, ...]
    false_positives: int
    mean_latency_ms: Optional[float]
    noise_monitoring_degraded: bool
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))

    @property
    def notes(self) -> str:
        latency = round(self.mean_latency_ms) if self.mean_latency_ms is not None else 0
        text = (f"Reliability Score: {self.reliability_score}% | False Positives: {self.false_positives} | "
                f"Avg Latency: {latency}ms | Duration: {format_duration(self.duration_seconds)}")
        if self.noise_monitoring_degraded:
            text += " | Noise monitoring unavailable"
        return text

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict for the recorder (frequency keys as strings)."""
        return {
            "schema": "puretone.result.v1",
            "created_at": self.created_at,
            "identity_ref": self.identity_ref,
            "mode": self.mode.value,
            "data": {
                "left": {str(k): v for k, v in sorted(self.left.items())},
                "right": {str(k): v for k, v in sorted(self.right.items())},
            },
            "thresholds": [
                {"ear": r.ear.value, "hz": r.frequency, "dbhl": r.threshold_db, "masked": r.masking is Masking.MASKED}
                for r in self.records
            ],
            "classification": self.classification_grade,
            "grade": self.grade,
            "pattern": self.pattern,
            "asymmetry": self.asymmetry_flag,
            "pta": {"left": self.left_pta, "right": self.right_pta},
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "reliability_score": self.reliability_score,
            "false_positives": self.false_positives,
            "mean_latency_ms": self.mean_latency_ms,
            "duration_seconds": self.duration_seconds,
            "noise_monitoring_degraded": self.noise_monitoring_degraded,
            "notes": self.notes,
        }


class ScreeningSession:
    """One pure-tone screening run, driven by discrete caller events.

    Owns the output and microphone for its whole lifetime: they are released
    on completion (``finalize``), on ``cancel`` and when used as a context
    manager that exits early. Every event first drains pending noise readings
    so the gate reflects the latest level.
    """

    def __init__(self, plan: TestPlan, synthesizer: ToneSynthesizer, monitor: AmbientNoiseMonitor,
                 controller: StaircaseController, evaluator: ResponseEvaluator, scorer: ReliabilityScorer,
                 recorder: Optional[Recorder] = None, identity_ref: Optional[str] = None,
                 noise_monitoring_degraded: bool = False, clock: Callable[[], float] = monotonic_ms):
        self.plan = plan
        self.synth = synthesizer
        self.monitor = monitor
        self.controller = controller
        self.evaluator = evaluator
        self.scorer = scorer
        self.classifier = AudiogramClassifier()
        self.recorder = recorder
        self.identity_ref = identity_ref
        self.clock = clock
        self.ui = controller.ui
        self._degraded = bool(noise_monitoring_degraded)
        self._last_handle: Optional[ToneHandle] = None
        self._result: Optional[AudiogramResult] = None
        self._recorded = False
        self._closed = False
        self.started_at = clock()

    # ---------------- State ----------------
    @property
    def state(self) -> SessionState:
        return self.controller.state

    @property
    def phase(self) -> Phase:
        return self.controller.phase

    @property
    def is_complete(self) -> bool:
        return self.controller.is_complete

    @property
    def is_blocked(self) -> bool:
        """Gate state as of the last ``poll_noise`` or session event."""
        return self.controller.is_blocked

    @property
    def current_step(self) -> TestStep:
        return self.controller.current_step

    @property
    def current_frequency(self) -> int:
        return self.controller.current_frequency

    @property
    def current_level(self) -> int:
        return self.controller.db

    @property
    def noise_level(self) -> int:
        return self.controller.noise_level

    @property
    def noise_monitoring_degraded(self) -> bool:
        return self._degraded or self.monitor.failed

    @property
    def elapsed_seconds(self) -> int:
        return int(round((self.clock() - self.started_at) / 1000.0))

    def _require_live(self) -> None:
        if self._closed or self.controller.phase is Phase.CANCELLED:
            raise SessionStateError("Session is closed.")

    # ---------------- Events ----------------
    def poll_noise(self) -> None:
        for reading in self.monitor.drain():
            self.controller.on_noise_level(reading.level, reading.noisy)
        if self.monitor.failed and not self._degraded:
            self._degraded = True
            self.controller.on_noise_level(0, False)
            self.ui.on_error("Ambient noise monitoring stopped: results will be flagged as degraded.")

    def press_tone(self) -> ToneHandle:
        """Start the tone for the active step and frequency (press-and-hold).

        Raises NoiseGateClosed while the environment is too noisy; the request
        is dropped and must be issued again once the gate clears.
        """
        self._require_live()
        self.poll_noise()
        request = self.controller.request_tone()
        handle = self.synth.play(request.frequency, request.level_db, request.ear, request.is_catch_trial)
        self._last_handle = handle
        self.ui.on_tone_started(request)
        return handle

    def release_tone(self) -> None:
        handle = self._last_handle
        if handle is None or not handle.active:
            return
        self.synth.stop(handle)
        if self.controller.active_request is not None:
            self.ui.on_tone_stopped(self.controller.active_request)

    def heard(self) -> ResponseOutcome:
        self._require_live()
        self.poll_noise()
        now = self.clock()
        handle = self._last_handle if self.controller.active_request is not None else None
        if handle is None:
            outcome = self.evaluator.evaluate_heard(now, None, None, False, False)
        else:
            outcome = self.evaluator.evaluate_heard(now, handle.start_time, handle.end_time,
                                                    handle.active, handle.is_catch_trial)
        self.controller.on_heard(outcome)
        self.synth.stop()
        return outcome

    def not_heard(self) -> Optional[ResponseRecord]:
        self._require_live()
        self.poll_noise()
        self.evaluator.evaluate_not_heard()
        record = self.controller.on_not_heard()
        self.synth.stop()
        return record

    def acknowledge_transition(self) -> None:
        self._require_live()
        self.controller.acknowledge_transition()

    def jump_to(self, ear, masking, frequency: Optional[int] = None) -> None:
        self._require_live()
        self.controller.jump_to(ear, masking, frequency)
        self.synth.stop()

    # ---------------- Completion ----------------
    def _build_result(self) -> AudiogramResult:
        results = self.controller.results
        by_ear = results.to_map_by_ear(Masking.UNMASKED)
        classification = self.classifier.classify(by_ear['L'], by_ear['R'])
        telemetry = self.controller.telemetry
        degraded = self.noise_monitoring_degraded
        return AudiogramResult(
            identity_ref=self.identity_ref,
            mode=self.plan.mode,
            left=MappingProxyType(dict(sorted(by_ear['L'].items()))),
            right=MappingProxyType(dict(sorted(by_ear['R'].items()))),
            reliability_score=self.scorer.score(telemetry, degraded),
            duration_seconds=self.elapsed_seconds,
            classification_grade=str(classification.grade),
            grade=classification.grade.grade,
            pattern=classification.pattern.value,
            asymmetry_flag=classification.asymmetry,
            left_pta=classification.left_pta,
            right_pta=classification.right_pta,
            summary=classification.summary,
            recommendations=classification.recommendations,
            records=tuple(results.records()),
            false_positives=telemetry.false_positives,
            mean_latency_ms=telemetry.mean_latency(),
            noise_monitoring_degraded=degraded,
        )

    def finalize(self) -> AudiogramResult:
        """Build the result once and hand it to the recorder.

        Raises FinalizeFailed if the recorder fails; the built result is kept
        so calling finalize again retries only the hand-off. Devices are
        released whatever the outcome.
        """
        if self._recorded:
            return self._result
        if not self.controller.is_complete:
            raise SessionStateError(f"Cannot finalize while session is {self.controller.phase.value}.")
        try:
            self.poll_noise()
            if self._result is None:
                self._result = self._build_result()
                logger.info("Session finished for %s: %s, reliability %d%%, %s",
                            self.identity_ref or "anonymous", self._result.classification_grade,
                            self._result.reliability_score, format_duration(self._result.duration_seconds))
            if self.recorder is not None:
                try:
                    self.recorder(self._result)
                except Exception as exc:
                    logger.error("Recorder rejected result: %s", exc)
                    self.ui.on_error(f"Failed to save results: {exc}")
                    raise FinalizeFailed(str(exc)) from exc
            self._recorded = True
            return self._result
        finally:
            self.close()

    def cancel(self) -> None:
        """Abort the session: nothing is recorded and every device is released."""
        if self.controller.phase is not Phase.CANCELLED:
            logger.info("Session cancelled at %s, %d Hz", self.current_step.label(), self.current_frequency)
        self.controller.cancel()
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.synth.close()
        finally:
            self.monitor.stop()

    def __enter__(self) -> "ScreeningSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._recorded:
            self.cancel()
        else:
            self.close()


def start_session(identity_ref: Optional[str] = None, mode=Mode.SCREENING, *, output=None, microphone=None,
                  recorder: Optional[Recorder] = None, settings: Optional[Dict[str, Any]] = None,
                  rng: Optional[random.Random] = None, clock: Callable[[], float] = monotonic_ms,
                  listener: Optional[SessionListener] = None, background_sampling: bool = True) -> ScreeningSession:
    """Acquire the devices and return a session positioned at the first tone.

    Raises AudioUnavailable when the output cannot be opened. A microphone
    failure is logged and the session runs without the noise gate, flagged as
    degraded.
    """
    settings = settings or default_settings()
    listener = listener or SessionListener()
    mode = Mode(mode)
    if output is None:
        output = SoundDeviceOutput(settings.get('output_device'))
    if microphone is None:
        microphone = SoundDeviceInput(settings.get('input_device'))

    plan = TestPlan.for_mode(mode)
    synth = ToneSynthesizer(
        output,
        sample_rate=settings['sample_rate'],
        fade_in_ms=settings['tone_fade_in_ms'],
        fade_out_ms=settings['tone_fade_out_ms'],
        reference_level_db=settings['reference_level_db'],
        calibration=settings.get('calibration'),
        clock=clock,
    )
    synth.open()

    monitor = AmbientNoiseMonitor(
        microphone,
        threshold=settings['noise_threshold'],
        poll_interval_ms=settings['noise_poll_interval_ms'],
        block_size=settings['noise_block_size'],
        sample_rate=settings['sample_rate'],
        clock=clock,
    )
    degraded = False
    try:
        try:
            monitor.start(run_thread=background_sampling)
        except MicUnavailable as exc:
            degraded = True
            logger.warning("Microphone unavailable, continuing without noise gate: %s", exc)
            listener.on_error("Microphone access is required for ambient noise monitoring. "
                              "Proceeding without it may affect test validity.")
        controller = StaircaseController(
            plan,
            rng=rng,
            catch_trial_probability=settings['catch_trial_probability'],
            noise_threshold=settings['noise_threshold'],
            listener=listener,
        )
        session = ScreeningSession(
            plan, synth, monitor, controller,
            ResponseEvaluator(settings['grace_period_ms']),
            ReliabilityScorer(settings['degraded_reliability_cap']),
            recorder=recorder,
            identity_ref=identity_ref,
            noise_monitoring_degraded=degraded,
            clock=clock,
        )
    except BaseException:
        try:
            synth.close()
        finally:
            monitor.stop()
        raise
    logger.info("Session started for %s (%s mode, %d frequencies)",
                identity_ref or "anonymous", mode.value, len(plan.frequencies))
    listener.on_step_started(controller.current_step)
    listener.on_frequency_started(controller.current_step, controller.current_frequency)
    return session
