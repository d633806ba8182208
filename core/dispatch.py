"""Serial dispatcher funnelling work from many threads into one."""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable

from core.logging import logger

_STOP = object()


class SerialDispatcher:
    """Single worker thread draining a FIFO queue of callables.

    Frames, perception results and timer firings all mutate detector and
    display state, so every one of them is submitted here and executed in
    submission order on the same thread.
    """

    def __init__(self, name: str = "signwatch-dispatch", maxsize: int = 0) -> None:
        self._name = name
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._worker: threading.Thread | None = None
        self._processed = 0
        self._failures = 0

    def start(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._worker.start()

    def stop(self, timeout_s: float = 2.0) -> None:
        if self._worker is None:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout=timeout_s)
        if self._worker.is_alive():
            logger.warning("[DISPATCH] Worker did not stop within %.2fs", timeout_s)
            return
        self._worker = None

    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def on_worker_thread(self) -> bool:
        return self._worker is not None and threading.current_thread() is self._worker

    def submit(self, fn: Callable[..., None], *args: Any) -> None:
        """Queue ``fn(*args)`` for execution on the worker thread."""

        self._queue.put((fn, args))

    def join(self) -> None:
        """Block until every queued item has been processed."""

        self._queue.join()

    def stats(self) -> dict[str, int]:
        return {
            "queued": self._queue.qsize(),
            "processed": self._processed,
            "failures": self._failures,
        }

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args = item
                try:
                    fn(*args)
                except Exception as exc:
                    self._failures += 1
                    logger.exception("[DISPATCH] Handler %s failed: %s", getattr(fn, "__name__", fn), exc)
                finally:
                    self._processed += 1
            finally:
                self._queue.task_done()
