"""Detector state machine sequencing detection, tracking and recognition."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable, Mapping, Union

from core.event_bus import EventBus, general_error, observation_rectangle
from core.logging import logger
from core.scheduler import ScheduledTask, Scheduler
from vision.detections import Frame, ObjectObservation, TextCandidate
from vision.normalization import NormalizationEngine
from vision.perception import (
    Capability,
    PerceptionGateway,
    PerceptionResult,
    PerceptionStartError,
)


class DetectorPhase(str, Enum):
    """Names of the detector states."""

    SLEEPING = "sleeping"
    DETECTING = "detecting"
    TRACKING = "tracking"


@dataclass(frozen=True)
class DetectorSettings:
    """Thresholds and timings for the detector state machine."""

    detection_confidence_threshold: float = 0.6
    minimum_height: float = 0.04
    max_aspect_ratio_deviation: float = 0.2
    tracking_confidence_threshold: float = 0.6
    escape_margin: float = 0.02
    recognition_confidence_threshold: float = 0.6
    max_recognition_attempts: int = 10
    sleep_duration_s: float = 3.0

    def __post_init__(self) -> None:
        if self.max_recognition_attempts < 1:
            raise ValueError(
                f"max_recognition_attempts must be >= 1, got {self.max_recognition_attempts}"
            )
        if not (0.0 <= self.escape_margin < 0.5):
            raise ValueError(f"escape_margin must be in [0, 0.5), got {self.escape_margin}")

    @classmethod
    def from_config(cls, section: Mapping[str, Any] | None = None) -> "DetectorSettings":
        if section is None:
            try:
                from config import ConfigController

                section = ConfigController.get_instance().get_section("detector")
            except Exception:
                section = {}

        defaults = cls()
        return cls(
            detection_confidence_threshold=float(
                section.get("detection_confidence_threshold", defaults.detection_confidence_threshold)
            ),
            minimum_height=float(section.get("minimum_height", defaults.minimum_height)),
            max_aspect_ratio_deviation=float(
                section.get("max_aspect_ratio_deviation", defaults.max_aspect_ratio_deviation)
            ),
            tracking_confidence_threshold=float(
                section.get("tracking_confidence_threshold", defaults.tracking_confidence_threshold)
            ),
            escape_margin=float(section.get("escape_margin", defaults.escape_margin)),
            recognition_confidence_threshold=float(
                section.get(
                    "recognition_confidence_threshold",
                    defaults.recognition_confidence_threshold,
                )
            ),
            max_recognition_attempts=int(
                section.get("max_recognition_attempts", defaults.max_recognition_attempts)
            ),
            sleep_duration_s=float(section.get("sleep_duration_s", defaults.sleep_duration_s)),
        )


@dataclass
class TrackingSession:
    """Data that only exists while a sign is being tracked."""

    observation: ObjectObservation
    attempts: int = 0
    upcoming_speed_limit: str | None = None
    tracker_session: Any = None


@dataclass(frozen=True)
class Sleeping:
    reason: str = "initial"
    resume_task: ScheduledTask | None = None
    generation: int = 0
    phase: DetectorPhase = field(default=DetectorPhase.SLEEPING, init=False)


@dataclass(frozen=True)
class Detecting:
    # Frame the outstanding detection was issued on, held until it resolves.
    pending_frame: Frame | None = None
    phase: DetectorPhase = field(default=DetectorPhase.DETECTING, init=False)


@dataclass(frozen=True)
class Tracking:
    session: TrackingSession
    phase: DetectorPhase = field(default=DetectorPhase.TRACKING, init=False)


DetectorState = Union[Sleeping, Detecting, Tracking]


def select_best_observation(
    observations: Iterable[ObjectObservation],
    frame: Frame,
    settings: DetectorSettings,
) -> ObjectObservation | None:
    """Return the most confident observation that looks like a round sign.

    Candidates must pass the confidence threshold, be tall enough and be close
    to square in pixel space. Ties keep the first candidate in input order.
    """

    best: ObjectObservation | None = None
    for observation in observations:
        box = observation.bounding_box
        if observation.confidence < settings.detection_confidence_threshold:
            continue
        if box.height < settings.minimum_height:
            continue
        aspect = box.pixel_aspect_ratio(frame.width, frame.height)
        if abs(aspect - 1.0) > settings.max_aspect_ratio_deviation:
            continue
        if best is None or observation.confidence > best.confidence:
            best = observation
    return best


class DetectorStateMachine:
    """Frame-driven Sleeping / Detecting / Tracking automaton.

    Every public method must be called from one serial context (the runtime's
    dispatcher). Perception results arrive through :meth:`handle_result`;
    results whose call was issued for a session or state that no longer
    exists are dropped.
    """

    def __init__(
        self,
        gateway: PerceptionGateway,
        scheduler: Scheduler,
        on_accepted: Callable[[str], None],
        engine: NormalizationEngine | None = None,
        settings: DetectorSettings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._gateway = gateway
        self._scheduler = scheduler
        self._on_accepted = on_accepted
        self._engine = engine if engine is not None else NormalizationEngine()
        self.settings = settings if settings is not None else DetectorSettings()
        self._event_bus = event_bus
        self._sleep_generation = 0
        self._state: DetectorState = Sleeping()
        self._frames_seen = 0
        self._values_accepted = 0

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def phase(self) -> DetectorPhase:
        return self._state.phase

    def start(self) -> None:
        """Leave the initial sleeping state and begin looking for signs."""

        if isinstance(self._state, Sleeping):
            self._enter_detecting("started")

    def suspend(self) -> None:
        """Stop processing frames until :meth:`resume` is called."""

        self._enter_sleeping("suspended")

    def resume(self) -> None:
        """Return to detection from any sleeping state."""

        if isinstance(self._state, Sleeping):
            self._enter_detecting("resumed")

    def process_frame(self, frame: Frame) -> None:
        self._frames_seen += 1
        state = self._state
        if isinstance(state, Sleeping):
            return
        if isinstance(state, Detecting):
            self._detect(state, frame)
        elif isinstance(state, Tracking):
            self._track(state.session, frame)

    def handle_result(self, result: PerceptionResult) -> None:
        if not self._gateway.complete(result):
            return
        if result.capability is Capability.DETECTOR:
            self._on_detection(result)
        elif result.capability is Capability.TRACKER:
            self._on_tracking(result)
        else:
            self._on_recognition(result)

    def snapshot(self) -> dict[str, Any]:
        """Return a status summary for diagnostics."""

        state = self._state
        summary: dict[str, Any] = {
            "phase": state.phase.value,
            "frames_seen": self._frames_seen,
            "values_accepted": self._values_accepted,
        }
        if isinstance(state, Tracking):
            summary["attempts"] = state.session.attempts
            summary["upcoming_speed_limit"] = state.session.upcoming_speed_limit
        return summary

    # Frame handling

    def _detect(self, state: Detecting, frame: Frame) -> None:
        if state.pending_frame is not None or self._gateway.is_busy(Capability.DETECTOR):
            return
        try:
            ticket = self._gateway.detect(frame)
        except PerceptionStartError as exc:
            self._report_failure(exc)
            return
        if ticket is not None:
            self._state = Detecting(pending_frame=frame)

    def _track(self, session: TrackingSession, frame: Frame) -> None:
        if session.upcoming_speed_limit is None:
            if session.attempts < self.settings.max_recognition_attempts - 1:
                if not self._gateway.is_busy(Capability.RECOGNIZER):
                    try:
                        ticket = self._gateway.recognize(frame, session.observation.bounding_box)
                    except PerceptionStartError as exc:
                        self._report_failure(exc)
                        self._enter_detecting("recognition could not start")
                        return
                    if ticket is not None:
                        session.attempts += 1
            else:
                self._publish_rectangle(None)
                self._enter_detecting("recognition attempts exhausted")
                return

        if self._gateway.is_busy(Capability.TRACKER):
            return
        try:
            if session.tracker_session is None:
                session.tracker_session = self._gateway.begin_tracking_session()
            self._gateway.track(session.tracker_session, frame, session.observation)
        except PerceptionStartError as exc:
            self._report_failure(exc)
            self._enter_detecting("tracking could not start")

    # Result handling

    def _on_detection(self, result: PerceptionResult) -> None:
        state = self._state
        if not isinstance(state, Detecting) or state.pending_frame is None:
            logger.debug("[DETECTOR] Ignoring detection result in %s", state.phase.value)
            return
        frame = state.pending_frame
        self._state = Detecting()

        if not result.ok:
            logger.warning("[DETECTOR] Detection failed: %s", result.error)
            return

        observations = [item for item in result.values if isinstance(item, ObjectObservation)]
        best = select_best_observation(observations, frame, self.settings)
        if best is None:
            if observations:
                logger.debug("[DETECTOR] %d candidate(s) rejected by filters", len(observations))
            return
        self._enter_tracking(best, frame)

    def _on_tracking(self, result: PerceptionResult) -> None:
        state = self._state
        if not isinstance(state, Tracking):
            logger.debug("[DETECTOR] Ignoring tracking result in %s", state.phase.value)
            return
        session = state.session
        self._publish_rectangle(None)

        if not result.ok:
            self._enter_detecting(f"tracker error: {result.error}")
            return
        observations = [item for item in result.values if isinstance(item, ObjectObservation)]
        if not observations:
            self._enter_detecting("tracker lost the sign")
            return

        observation = observations[0]
        low_confidence = observation.confidence < self.settings.tracking_confidence_threshold
        if low_confidence and session.upcoming_speed_limit is None:
            self._enter_detecting("tracking confidence dropped")
            return

        if low_confidence or observation.bounding_box.escapes(self.settings.escape_margin):
            value = session.upcoming_speed_limit
            if value is not None:
                self._enter_sleeping(
                    f"accepted {value}",
                    resume_after_s=self.settings.sleep_duration_s,
                )
                self._values_accepted += 1
                self._on_accepted(value)
            else:
                self._enter_detecting("sign left the frame before it was read")
            return

        session.observation = observation
        self._publish_rectangle(
            observation.bounding_box.as_tuple(),
            confirmed=session.upcoming_speed_limit is not None,
        )

    def _on_recognition(self, result: PerceptionResult) -> None:
        state = self._state
        if not isinstance(state, Tracking):
            logger.debug("[DETECTOR] Ignoring recognition result in %s", state.phase.value)
            return
        if not result.ok:
            logger.debug("[DETECTOR] Recognition failed: %s", result.error)
            return

        session = state.session
        candidate = next((item for item in result.values if isinstance(item, TextCandidate)), None)
        value = self._engine.normalize_candidate(
            candidate,
            self.settings.recognition_confidence_threshold,
        )
        if value is not None and session.upcoming_speed_limit is None:
            session.upcoming_speed_limit = value
            logger.info(
                "[DETECTOR] Read speed limit %s after %d attempt(s)",
                value,
                session.attempts + 1,
            )

    # Transitions

    def _leave_current_state(self) -> None:
        state = self._state
        if isinstance(state, Tracking):
            self._gateway.invalidate(Capability.TRACKER, Capability.RECOGNIZER)
        elif isinstance(state, Detecting) and state.pending_frame is not None:
            self._gateway.invalidate(Capability.DETECTOR)
        elif isinstance(state, Sleeping):
            self._scheduler.cancel(state.resume_task)
        self._sleep_generation += 1

    def _enter_detecting(self, reason: str) -> None:
        previous = self._state.phase
        self._leave_current_state()
        self._state = Detecting()
        self._log_transition(previous, DetectorPhase.DETECTING, reason)

    def _enter_tracking(self, observation: ObjectObservation, frame: Frame) -> None:
        previous = self._state.phase
        self._leave_current_state()
        # Calls still running for an earlier session must come back stale.
        self._gateway.invalidate(Capability.TRACKER, Capability.RECOGNIZER)
        session = TrackingSession(observation=observation)
        self._state = Tracking(session=session)
        self._log_transition(
            previous,
            DetectorPhase.TRACKING,
            f"sign at {observation.bounding_box.as_tuple()} conf={observation.confidence:.2f}",
        )
        try:
            ticket = self._gateway.recognize(frame, observation.bounding_box)
        except PerceptionStartError as exc:
            self._report_failure(exc)
            self._enter_detecting("recognition could not start")
            return
        if ticket is None:
            logger.debug("[DETECTOR] Recognizer busy; first attempt deferred to next frame")

    def _enter_sleeping(self, reason: str, resume_after_s: float | None = None) -> None:
        previous = self._state.phase
        self._leave_current_state()
        generation = self._sleep_generation
        resume_task = None
        if resume_after_s is not None:
            resume_task = self._scheduler.schedule(
                resume_after_s,
                partial(self._resume_from_sleep, generation),
                name="detector-resume",
            )
        self._state = Sleeping(reason=reason, resume_task=resume_task, generation=generation)
        self._log_transition(previous, DetectorPhase.SLEEPING, reason)

    def _resume_from_sleep(self, generation: int) -> None:
        state = self._state
        if not isinstance(state, Sleeping) or state.generation != generation:
            logger.debug("[DETECTOR] Ignoring superseded resume task (generation %s)", generation)
            return
        self._enter_detecting("sleep elapsed")

    # Output helpers

    def _report_failure(self, exc: PerceptionStartError) -> None:
        logger.error("[DETECTOR] %s", exc)
        if self._event_bus is not None:
            self._event_bus.publish(general_error(str(exc), capability=exc.capability.value))

    def _publish_rectangle(
        self,
        bbox: tuple[float, float, float, float] | None,
        confirmed: bool = False,
    ) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(observation_rectangle(bbox, confirmed), coalesce=True)

    def _log_transition(self, old: DetectorPhase, new: DetectorPhase, reason: str) -> None:
        if old is new:
            logger.debug("[DETECTOR] %s (%s)", new.value, reason)
            return
        logger.info("[DETECTOR] %s -> %s (%s)", old.value, new.value, reason)
