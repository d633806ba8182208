"""Process-wide deferred task scheduler with cancellation."""

from __future__ import annotations

from dataclasses import dataclass, field
import heapq
import itertools
import threading
import time
from typing import Callable

from core.logging import logger

Task = Callable[[], None]
Dispatch = Callable[[Task], None]


@dataclass(eq=False)
class ScheduledTask:
    """Cancellation handle for one scheduled task."""

    task_id: int
    due: float
    callback: Task
    name: str = ""
    cancelled: bool = False
    fired: bool = False
    created_at: float = field(default_factory=time.monotonic)

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


def _run_inline(task: Task) -> None:
    task()


class Scheduler:
    """Singleton timer thread that fires tasks no earlier than their delay.

    Fired tasks are handed to ``dispatch`` rather than run directly so the
    runtime can funnel them through its serial dispatcher.
    """

    _instance: "Scheduler | None" = None

    def __init__(
        self,
        dispatch: Dispatch | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if Scheduler._instance is not None:
            raise RuntimeError("You cannot create another Scheduler class")

        self._dispatch: Dispatch = dispatch if dispatch is not None else _run_inline
        self._clock = clock
        self._cond = threading.Condition(threading.Lock())
        self._heap: list[tuple[float, int, ScheduledTask]] = []
        self._ids = itertools.count(1)
        self._stop_event = threading.Event()
        self._loop_thread: threading.Thread | None = None
        Scheduler._instance = self

    @classmethod
    def get_instance(cls) -> "Scheduler":
        """Return the process-wide scheduler."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def set_dispatch(self, dispatch: Dispatch | None) -> None:
        with self._cond:
            self._dispatch = dispatch if dispatch is not None else _run_inline

    def start(self) -> None:
        if self._loop_thread is None or not self._loop_thread.is_alive():
            self._stop_event.clear()
            self._loop_thread = threading.Thread(
                target=self._loop,
                name="signwatch-scheduler",
                daemon=True,
            )
            self._loop_thread.start()

    def stop(self, timeout_s: float = 2.0) -> None:
        if self._loop_thread is not None:
            self._stop_event.set()
            with self._cond:
                self._cond.notify_all()
            self._loop_thread.join(timeout=timeout_s)
            if self._loop_thread.is_alive():
                logger.warning(
                    "[SCHEDULER] Timer thread did not exit within %.2fs; continuing shutdown.",
                    timeout_s,
                )
                return
            self._loop_thread = None

    def is_running(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    def schedule(self, delay_s: float, task: Task, name: str = "") -> ScheduledTask:
        """Schedule ``task`` to fire after ``delay_s`` seconds."""

        with self._cond:
            handle = ScheduledTask(
                task_id=next(self._ids),
                due=self._clock() + max(0.0, float(delay_s)),
                callback=task,
                name=name,
            )
            heapq.heappush(self._heap, (handle.due, handle.task_id, handle))
            self._cond.notify()
        logger.debug("[SCHEDULER] Scheduled %s #%s in %.2fs", name or "task", handle.task_id, delay_s)
        return handle

    def cancel(self, handle: ScheduledTask | None) -> bool:
        """Cancel a pending task. Returns whether anything was cancelled."""

        if handle is None:
            return False
        with self._cond:
            if not handle.pending:
                return False
            handle.cancelled = True
            self._cond.notify()
        logger.debug("[SCHEDULER] Cancelled %s #%s", handle.name or "task", handle.task_id)
        return True

    def pending_count(self) -> int:
        with self._cond:
            return sum(1 for _, _, handle in self._heap if handle.pending)

    def _pop_due_locked(self) -> ScheduledTask | None:
        while self._heap and not self._heap[0][2].pending:
            heapq.heappop(self._heap)
        if not self._heap:
            return None
        due, _, handle = self._heap[0]
        if due > self._clock():
            return None
        heapq.heappop(self._heap)
        handle.fired = True
        return handle

    def _next_wait_locked(self) -> float | None:
        if not self._heap:
            return None
        return max(0.0, self._heap[0][0] - self._clock())

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            with self._cond:
                handle = self._pop_due_locked()
                if handle is None:
                    self._cond.wait(timeout=self._next_wait_locked())
                    continue
                dispatch = self._dispatch
            try:
                dispatch(handle.callback)
            except Exception as exc:
                logger.exception(
                    "[SCHEDULER] Task %s #%s failed: %s",
                    handle.name or "task",
                    handle.task_id,
                    exc,
                )
