"""Asynchronous gateway over the detection, tracking and recognition providers."""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from enum import Enum
from functools import partial
import itertools
import threading
from typing import Any, Callable, Protocol, Sequence

from core.logging import logger
from vision.detections import BoundingBox, Frame, ObjectObservation, TextCandidate
from vision.normalization import VALID_SPEED_LIMITS


class Capability(str, Enum):
    """External perception capabilities consumed by the detector."""

    DETECTOR = "detector"
    TRACKER = "tracker"
    RECOGNIZER = "recognizer"


@dataclass(frozen=True)
class RecognitionHints:
    """Recognizer tuning passed along with every cropped image."""

    custom_words: tuple[str, ...] = VALID_SPEED_LIMITS
    minimum_text_height: float = 0.1


class Detector(Protocol):
    def detect(self, frame: Frame) -> Sequence[ObjectObservation]:
        ...


class Tracker(Protocol):
    def begin_session(self) -> Any:
        ...

    def track(
        self,
        session: Any,
        frame: Frame,
        reference: ObjectObservation,
    ) -> Sequence[ObjectObservation]:
        ...


class Recognizer(Protocol):
    def recognize(self, image: Any, hints: RecognitionHints) -> Sequence[TextCandidate]:
        ...


class PerceptionStartError(RuntimeError):
    """Raised when a capability call cannot even be issued."""

    def __init__(self, capability: Capability, message: str) -> None:
        super().__init__(f"{capability.value}: {message}")
        self.capability = capability


@dataclass(frozen=True)
class CallTicket:
    """Identity of one issued capability call."""

    capability: Capability
    generation: int
    call_id: int


@dataclass(frozen=True)
class PerceptionResult:
    """Tagged success/failure value delivered for a finished call."""

    ticket: CallTicket
    values: tuple[Any, ...] = ()
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def capability(self) -> Capability:
        return self.ticket.capability


class CapabilityChannel:
    """In-flight flag and generation counter for one capability.

    A channel admits one outstanding call. ``invalidate`` bumps the
    generation so results of calls issued earlier are recognized as stale
    when they arrive; the stale call still occupies the channel until then.
    """

    def __init__(self, capability: Capability) -> None:
        self.capability = capability
        self._lock = threading.Lock()
        self._generation = 0
        self._in_flight: CallTicket | None = None
        self._ids = itertools.count(1)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    def open(self) -> CallTicket | None:
        with self._lock:
            if self._in_flight is not None:
                return None
            ticket = CallTicket(self.capability, self._generation, next(self._ids))
            self._in_flight = ticket
            return ticket

    def close(self, ticket: CallTicket) -> bool:
        """Release the channel for ``ticket``; return whether it is current."""

        with self._lock:
            if self._in_flight == ticket:
                self._in_flight = None
            return ticket.generation == self._generation

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1


class PerceptionGateway:
    """Issues fire-and-forget capability calls on a worker pool.

    Provider methods are plain blocking callables; the gateway runs them on an
    executor and hands every outcome to ``deliver`` as a
    :class:`PerceptionResult`. ``deliver`` is expected to enqueue the result
    onto the runtime's serial dispatcher rather than act on it directly.
    """

    def __init__(
        self,
        detector: Detector,
        tracker: Tracker,
        recognizer: Recognizer,
        deliver: Callable[[PerceptionResult], None],
        executor: concurrent.futures.Executor | None = None,
        hints: RecognitionHints | None = None,
        max_workers: int = 3,
    ) -> None:
        self._detector = detector
        self._tracker = tracker
        self._recognizer = recognizer
        self._deliver = deliver
        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="signwatch-perception",
        )
        self.hints = hints if hints is not None else RecognitionHints()
        self._channels = {capability: CapabilityChannel(capability) for capability in Capability}

    def channel(self, capability: Capability) -> CapabilityChannel:
        return self._channels[capability]

    def is_busy(self, capability: Capability) -> bool:
        return self._channels[capability].busy

    def detect(self, frame: Frame) -> CallTicket | None:
        return self._submit(Capability.DETECTOR, self._detector.detect, frame)

    def begin_tracking_session(self) -> Any:
        try:
            return self._tracker.begin_session()
        except Exception as exc:
            raise PerceptionStartError(Capability.TRACKER, f"session setup failed: {exc}") from exc

    def track(self, session: Any, frame: Frame, reference: ObjectObservation) -> CallTicket | None:
        return self._submit(Capability.TRACKER, self._tracker.track, session, frame, reference)

    def recognize(self, frame: Frame, bounding_box: BoundingBox) -> CallTicket | None:
        if self.is_busy(Capability.RECOGNIZER):
            return None
        try:
            cropped = frame.crop(bounding_box)
        except Exception as exc:
            raise PerceptionStartError(Capability.RECOGNIZER, f"crop failed: {exc}") from exc
        return self._submit(Capability.RECOGNIZER, self._recognizer.recognize, cropped, self.hints)

    def complete(self, result: PerceptionResult) -> bool:
        """Release the channel of a finished call; return whether it is current."""

        current = self._channels[result.capability].close(result.ticket)
        if not current:
            logger.debug(
                "[PERCEPTION] Discarding stale %s result #%s",
                result.capability.value,
                result.ticket.call_id,
            )
        return current

    def invalidate(self, *capabilities: Capability) -> None:
        for capability in capabilities or tuple(Capability):
            self._channels[capability].invalidate()

    def shutdown(self, wait: bool = False) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _submit(self, capability: Capability, fn: Callable[..., Any], *args: Any) -> CallTicket | None:
        channel = self._channels[capability]
        ticket = channel.open()
        if ticket is None:
            return None
        try:
            future = self._executor.submit(fn, *args)
        except Exception as exc:
            channel.close(ticket)
            raise PerceptionStartError(capability, f"call could not be issued: {exc}") from exc
        future.add_done_callback(partial(self._on_done, ticket))
        return ticket

    def _on_done(self, ticket: CallTicket, future: concurrent.futures.Future) -> None:
        try:
            values = tuple(future.result() or ())
            result = PerceptionResult(ticket=ticket, values=values)
        except Exception as exc:
            logger.warning("[PERCEPTION] %s call #%s failed: %s", ticket.capability.value, ticket.call_id, exc)
            result = PerceptionResult(ticket=ticket, error=exc)
        self._deliver(result)
