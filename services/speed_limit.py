"""Lifecycle of the speed limit currently shown to the driver."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
import time
from typing import Any, Callable, Mapping

from core.event_bus import EventBus, hide_speed_limit, show_speed_limit
from core.logging import logger
from core.scheduler import ScheduledTask, Scheduler
from vision.normalization import VALID_SPEED_LIMITS


@dataclass(frozen=True)
class SpeedLimitSettings:
    """Timing for displayed speed limits."""

    validity_duration_s: float = 180.0
    valid_tokens: tuple[str, ...] = VALID_SPEED_LIMITS

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "SpeedLimitSettings":
        if config is None:
            try:
                from config import ConfigController

                config = ConfigController.get_instance().get_config()
            except Exception:
                config = {}

        defaults = cls()
        section = config.get("speed_limit") or {}
        normalization = config.get("normalization") or {}
        valid_tokens = normalization.get("valid_tokens")
        return cls(
            validity_duration_s=float(
                section.get("validity_duration_s", defaults.validity_duration_s)
            ),
            valid_tokens=(
                tuple(str(item) for item in valid_tokens)
                if isinstance(valid_tokens, list)
                else VALID_SPEED_LIMITS
            ),
        )


@dataclass(frozen=True)
class DisplayedSpeedLimit:
    """Value on screen together with the timer that will expire it."""

    value: str
    expiry_task: ScheduledTask | None
    generation: int
    shown_at: float


class SpeedLimitLifecycleManager:
    """Owns the displayed value and its single expiry timer.

    Every armed expiry timer carries a generation number; a timer that fires
    after being superseded by a newer ``accept`` or a manual cancel is a
    no-op.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        event_bus: EventBus | None = None,
        settings: SpeedLimitSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._scheduler = scheduler
        self._event_bus = event_bus
        self.settings = settings if settings is not None else SpeedLimitSettings()
        self._clock = clock
        self._generation = 0
        self._displayed: DisplayedSpeedLimit | None = None

    @property
    def displayed(self) -> DisplayedSpeedLimit | None:
        return self._displayed

    @property
    def current_value(self) -> str | None:
        return self._displayed.value if self._displayed is not None else None

    def accept(self, value: str) -> None:
        """Show ``value`` and restart the validity countdown."""

        if value not in self.settings.valid_tokens:
            raise ValueError(f"{value!r} is not a valid speed limit")

        previous = self._displayed
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        expiry_task = self._scheduler.schedule(
            self.settings.validity_duration_s,
            partial(self.cancel_expired, generation),
            name="speed-limit-expiry",
        )
        self._displayed = DisplayedSpeedLimit(
            value=value,
            expiry_task=expiry_task,
            generation=generation,
            shown_at=self._clock(),
        )
        if previous is None:
            logger.info("[SPEED_LIMIT] Showing %s", value)
        else:
            logger.info("[SPEED_LIMIT] Replacing %s with %s", previous.value, value)
        self._publish(show_speed_limit(value))

    def cancel_expired(self, generation: int | None = None) -> None:
        """Clear the value when its validity runs out.

        ``generation`` identifies the timer that fired; a stale one is ignored.
        Without a generation the value is cleared unconditionally.
        """

        if generation is not None and generation != self._generation:
            logger.debug("[SPEED_LIMIT] Ignoring superseded expiry (generation %s)", generation)
            return
        self._clear("expired")

    def cancel_manual(self) -> None:
        """Dismiss the value on user request."""

        self._cancel_timer()
        self._generation += 1
        self._clear("dismissed")

    def _cancel_timer(self) -> None:
        if self._displayed is not None:
            self._scheduler.cancel(self._displayed.expiry_task)

    def _clear(self, reason: str) -> None:
        displayed = self._displayed
        self._displayed = None
        if displayed is None:
            return
        logger.info("[SPEED_LIMIT] Hiding %s (%s)", displayed.value, reason)
        self._publish(hide_speed_limit(reason))

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
