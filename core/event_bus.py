"""Thread-safe event bus for presentation-layer events."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
import threading
import time
from typing import Any, Deque, Iterable

from core.logging import logger

_PRIORITY_SCORES = {"critical": 3, "high": 2, "normal": 1, "low": 0}


class EventKind(str, Enum):
    """Events emitted by the core towards the presentation layer."""

    SHOW_SPEED_LIMIT = "show_speed_limit"
    HIDE_SPEED_LIMIT = "hide_speed_limit"
    OBSERVATION_RECTANGLE = "observation_rectangle"
    GENERAL_ERROR = "general_error"


@dataclass(frozen=True)
class Event:
    """Structured event payload for the presentation layer."""

    source: str
    kind: EventKind
    priority: str = "normal"
    metadata: dict[str, Any] = field(default_factory=dict)
    dedupe_key: str | None = None
    created_at: float = field(default_factory=time.time)


class EventBus:
    """Thread-safe queue for pending presentation events."""

    def __init__(self, maxlen: int = 200) -> None:
        self._maxlen = maxlen
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._queue: Deque[Event] = deque()

    def publish(self, event: Event, *, coalesce: bool = False) -> None:
        with self._cond:
            if coalesce and event.dedupe_key:
                self._remove_matching(event.dedupe_key)
            if len(self._queue) >= self._maxlen:
                dropped = self._queue.popleft()
                logger.warning("[EVENT_BUS] Queue full; dropped %s from %s", dropped.kind.value, dropped.source)
            self._queue.append(event)
            self._cond.notify()

    def get_next(self, timeout: float | None = None) -> Event | None:
        with self._cond:
            if not self._queue:
                self._cond.wait(timeout=timeout)
            if not self._queue:
                return None
            event = self._pop_highest_priority()
            return event

    def drain(self) -> Iterable[Event]:
        with self._cond:
            events = list(self._queue)
            self._queue.clear()
            return events

    def notify(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def _remove_matching(self, dedupe_key: str) -> None:
        stale = [event for event in self._queue if event.dedupe_key == dedupe_key]
        for event in stale:
            self._queue.remove(event)

    def _pop_highest_priority(self) -> Event:
        if len(self._queue) == 1:
            return self._queue.popleft()
        best_index = 0
        best_score = -1
        for index, event in enumerate(self._queue):
            score = _PRIORITY_SCORES.get(event.priority, 1)
            if score > best_score:
                best_score = score
                best_index = index
                if best_score == 3:
                    break
        if best_index == 0:
            return self._queue.popleft()
        event = self._queue[best_index]
        del self._queue[best_index]
        return event


def show_speed_limit(value: str) -> Event:
    return Event(
        source="speed_limit",
        kind=EventKind.SHOW_SPEED_LIMIT,
        priority="high",
        metadata={"value": value},
    )


def hide_speed_limit(reason: str) -> Event:
    return Event(
        source="speed_limit",
        kind=EventKind.HIDE_SPEED_LIMIT,
        priority="high",
        metadata={"reason": reason},
    )


def observation_rectangle(
    bbox: tuple[float, float, float, float] | None,
    confirmed: bool = False,
) -> Event:
    return Event(
        source="detector",
        kind=EventKind.OBSERVATION_RECTANGLE,
        priority="low",
        metadata={"bbox": bbox, "confirmed": confirmed},
        dedupe_key="observation_rectangle",
    )


def general_error(message: str, capability: str | None = None) -> Event:
    return Event(
        source="perception",
        kind=EventKind.GENERAL_ERROR,
        priority="critical",
        metadata={"message": message, "capability": capability},
    )
