"""Application runtime wiring the sign reader components together."""

from __future__ import annotations

from dataclasses import dataclass
import importlib
import time
from typing import Any, Mapping

from core.dispatch import SerialDispatcher
from core.event_bus import EventBus
from core.logging import logger
from core.scheduler import Scheduler
from services.speed_limit import SpeedLimitLifecycleManager, SpeedLimitSettings
from vision.detections import Frame
from vision.detector_state import DetectorSettings, DetectorStateMachine
from vision.normalization import NormalizationEngine, NormalizationSettings
from vision.perception import (
    Capability,
    Detector,
    PerceptionGateway,
    PerceptionResult,
    RecognitionHints,
    Recognizer,
    Tracker,
)


@dataclass(frozen=True)
class RuntimeSettings:
    """Configuration for the runtime plumbing.

    Attributes:
        perception_workers: Size of the worker pool running provider calls.
        event_bus_size: Maximum number of undelivered presentation events.
    """

    perception_workers: int = 3
    event_bus_size: int = 200

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RuntimeSettings":
        section = config.get("runtime") or {}
        defaults = cls()
        return cls(
            perception_workers=max(1, int(section.get("perception_workers", defaults.perception_workers))),
            event_bus_size=max(1, int(section.get("event_bus_size", defaults.event_bus_size))),
        )


def load_provider(path: str) -> Any:
    """Instantiate a provider from a ``module:attribute`` path.

    Args:
        path: Dotted module path and attribute separated by a colon.

    Returns:
        The attribute itself, or the result of calling it when callable.
    """

    module_name, sep, attribute = str(path).partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Provider path must look like 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    target = getattr(module, attribute)
    return target() if callable(target) else target


class SignReaderRuntime:
    """Owns the dispatcher, timers, gateway, detector and display lifecycle."""

    def __init__(
        self,
        detector: Detector,
        tracker: Tracker,
        recognizer: Recognizer,
        config: Mapping[str, Any] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        config = config if config is not None else {}
        self.settings = RuntimeSettings.from_config(config)
        normalization = NormalizationSettings.from_config(config.get("normalization") or {})

        self.dispatcher = SerialDispatcher()
        self.scheduler = scheduler if scheduler is not None else Scheduler.get_instance()
        self.scheduler.set_dispatch(self.dispatcher.submit)
        self.event_bus = EventBus(maxlen=self.settings.event_bus_size)
        self.gateway = PerceptionGateway(
            detector,
            tracker,
            recognizer,
            deliver=self._deliver_result,
            hints=RecognitionHints(
                custom_words=normalization.valid_tokens,
                minimum_text_height=normalization.minimum_text_height,
            ),
            max_workers=self.settings.perception_workers,
        )
        self.lifecycle = SpeedLimitLifecycleManager(
            self.scheduler,
            event_bus=self.event_bus,
            settings=SpeedLimitSettings.from_config(config),
        )
        self.detector = DetectorStateMachine(
            self.gateway,
            self.scheduler,
            on_accepted=self.lifecycle.accept,
            engine=NormalizationEngine(normalization),
            settings=DetectorSettings.from_config(config.get("detector") or {}),
            event_bus=self.event_bus,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SignReaderRuntime":
        """Build a runtime with providers named in the ``providers`` section."""

        providers = config.get("providers") or {}
        loaded = {}
        for name in ("detector", "tracker", "recognizer"):
            path = providers.get(name)
            if not path:
                raise RuntimeError(f"No {name} provider configured (providers.{name})")
            loaded[name] = load_provider(path)
            logger.info("Loaded %s provider from %s", name, path)
        return cls(loaded["detector"], loaded["tracker"], loaded["recognizer"], config=config)

    def start(self) -> None:
        self.dispatcher.start()
        self.scheduler.start()
        self.dispatcher.submit(self.detector.start)
        logger.info("Sign reader runtime started")

    def stop(self) -> None:
        self.dispatcher.stop()
        self.scheduler.stop()
        self.gateway.shutdown()
        logger.info("Sign reader runtime stopped")

    def wait_until_idle(self, timeout_s: float = 10.0, poll_s: float = 0.01) -> bool:
        """Block until no provider call is in flight and the dispatcher is drained.

        Results of calls still running are delivered back through the
        dispatcher, so draining it once is not enough.

        Returns:
            ``False`` when work was still pending after ``timeout_s``.
        """

        deadline = time.monotonic() + timeout_s
        while True:
            self.dispatcher.join()
            busy = [capability.value for capability in Capability if self.gateway.is_busy(capability)]
            if not busy and self.dispatcher.stats()["queued"] == 0:
                return True
            if time.monotonic() >= deadline:
                logger.warning("Runtime still busy after %.1fs: %s", timeout_s, ", ".join(busy) or "dispatch")
                return False
            time.sleep(poll_s)

    def submit_frame(self, frame: Frame) -> None:
        self.dispatcher.submit(self.detector.process_frame, frame)

    def cancel_speed_limit(self) -> None:
        self.dispatcher.submit(self.lifecycle.cancel_manual)

    def suspend(self) -> None:
        self.dispatcher.submit(self.detector.suspend)

    def resume(self) -> None:
        self.dispatcher.submit(self.detector.resume)

    def get_event_bus(self) -> EventBus:
        return self.event_bus

    def get_status(self) -> dict[str, Any]:
        status = dict(self.detector.snapshot())
        status["displayed_speed_limit"] = self.lifecycle.current_value
        status["pending_timers"] = self.scheduler.pending_count()
        status.update({f"dispatch_{key}": value for key, value in self.dispatcher.stats().items()})
        return status

    def _deliver_result(self, result: PerceptionResult) -> None:
        self.dispatcher.submit(self.detector.handle_result, result)
