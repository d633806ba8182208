"""Shared fakes for detector, gateway and lifecycle tests."""

from __future__ import annotations

from collections import deque
import concurrent.futures
import itertools
from typing import Any, Callable

import numpy as np
import pytest

from core.event_bus import Event, EventBus, EventKind
from core.scheduler import ScheduledTask
from services.speed_limit import SpeedLimitLifecycleManager
from vision.detections import BoundingBox, Frame, ObjectObservation, TextCandidate
from vision.detector_state import DetectorSettings, DetectorStateMachine
from vision.perception import PerceptionGateway


class DeferredExecutor:
    """Executor that only runs submitted calls when a test asks it to."""

    def __init__(self) -> None:
        self.jobs: list[tuple[concurrent.futures.Future, Callable[..., Any], tuple[Any, ...]]] = []
        self.fail_submissions = False

    def submit(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        if self.fail_submissions:
            raise RuntimeError("executor unavailable")
        future: concurrent.futures.Future = concurrent.futures.Future()
        self.jobs.append((future, fn, args))
        return future

    def run_next(self, index: int = 0) -> None:
        future, fn, args = self.jobs.pop(index)
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def run_all(self) -> None:
        while self.jobs:
            self.run_next()

    def pending_for(self, provider: Any) -> int:
        return sum(1 for _, fn, _ in self.jobs if getattr(fn, "__self__", None) is provider)

    def shutdown(self, wait: bool = True) -> None:
        self.jobs.clear()


class FakeScheduler:
    """Scheduler double with a manual clock."""

    def __init__(self) -> None:
        self.tasks: list[ScheduledTask] = []
        self.now = 0.0
        self._ids = itertools.count(1)

    def schedule(self, delay_s: float, task: Callable[[], None], name: str = "") -> ScheduledTask:
        handle = ScheduledTask(task_id=next(self._ids), due=self.now + delay_s, callback=task, name=name)
        self.tasks.append(handle)
        return handle

    def cancel(self, handle: ScheduledTask | None) -> bool:
        if handle is None or not handle.pending:
            return False
        handle.cancelled = True
        return True

    def pending(self, name: str | None = None) -> list[ScheduledTask]:
        return [task for task in self.tasks if task.pending and (name is None or task.name == name)]

    def pending_count(self) -> int:
        return len(self.pending())

    def fire(self, handle: ScheduledTask) -> bool:
        if not handle.pending:
            return False
        handle.fired = True
        handle.callback()
        return True

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for handle in sorted(self.pending(), key=lambda task: task.due):
            if handle.due <= self.now:
                self.fire(handle)

    def set_dispatch(self, dispatch: Any) -> None:
        pass

    def start(self) -> None:
        pass

    def stop(self, timeout_s: float = 2.0) -> None:
        pass


class _ScriptedProvider:
    def __init__(self) -> None:
        self.responses: deque[Any] = deque()
        self.calls: list[tuple[Any, ...]] = []

    def script(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, default: Any) -> Any:
        response = self.responses.popleft() if self.responses else default
        if isinstance(response, BaseException):
            raise response
        return response


class ScriptedDetector(_ScriptedProvider):
    def detect(self, frame: Frame) -> list[ObjectObservation]:
        self.calls.append((frame,))
        return self._next([])


class ScriptedTracker(_ScriptedProvider):
    def __init__(self) -> None:
        super().__init__()
        self.sessions_started = 0

    def begin_session(self) -> Any:
        self.sessions_started += 1
        return {"session": self.sessions_started}

    def track(self, session: Any, frame: Frame, reference: ObjectObservation) -> list[ObjectObservation]:
        self.calls.append((session, frame, reference))
        return self._next([reference])


class ScriptedRecognizer(_ScriptedProvider):
    def recognize(self, image: Any, hints: Any) -> list[TextCandidate]:
        self.calls.append((image, hints))
        return self._next([])


def make_frame(width: int = 400, height: int = 400, frame_id: int | None = None) -> Frame:
    return Frame.from_array(np.zeros((height, width, 3), dtype=np.uint8), frame_id=frame_id)


def sign(x: float = 0.45, y: float = 0.45, size: float = 0.1, confidence: float = 0.9) -> ObjectObservation:
    """Square observation on the 400x400 test frame."""

    return ObjectObservation(BoundingBox(x, y, size, size), confidence)


def reading(text: str, confidence: float = 0.9) -> list[TextCandidate]:
    return [TextCandidate(text, confidence)]


class Harness:
    """Detector wired to scripted providers, a deferred executor and fake timers.

    Results are delivered synchronously, standing in for the serial dispatcher.
    """

    def __init__(
        self,
        settings: DetectorSettings | None = None,
        detector: ScriptedDetector | None = None,
        tracker: ScriptedTracker | None = None,
        recognizer: ScriptedRecognizer | None = None,
    ) -> None:
        self.executor = DeferredExecutor()
        self.scheduler = FakeScheduler()
        self.event_bus = EventBus(maxlen=1000)
        self.detector = detector or ScriptedDetector()
        self.tracker = tracker or ScriptedTracker()
        self.recognizer = recognizer or ScriptedRecognizer()
        self.gateway = PerceptionGateway(
            self.detector,
            self.tracker,
            self.recognizer,
            deliver=self._deliver,
            executor=self.executor,
        )
        self.lifecycle = SpeedLimitLifecycleManager(self.scheduler, event_bus=self.event_bus)
        self.machine = DetectorStateMachine(
            self.gateway,
            self.scheduler,
            on_accepted=self.lifecycle.accept,
            settings=settings or DetectorSettings(),
            event_bus=self.event_bus,
        )
        self._events: list[Event] = []

    def _deliver(self, result: Any) -> None:
        self.machine.handle_result(result)

    def feed(self, frame: Frame | None = None) -> None:
        self.machine.process_frame(frame if frame is not None else make_frame())

    def step(self, frame: Frame | None = None) -> None:
        """Feed one frame and let every call it issued complete."""

        self.feed(frame)
        self.executor.run_all()

    def start_tracking(self, observation: ObjectObservation | None = None) -> None:
        self.machine.start()
        self.detector.script([observation or sign()])
        self.step()

    def events(self, kind: EventKind | None = None) -> list[Event]:
        self._events.extend(self.event_bus.drain())
        return [event for event in self._events if kind is None or event.kind is kind]


@pytest.fixture
def harness_factory() -> Callable[..., Harness]:
    return Harness


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()
