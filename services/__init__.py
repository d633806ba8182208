"""Services layered on top of the detector."""

from services.speed_limit import DisplayedSpeedLimit, SpeedLimitLifecycleManager, SpeedLimitSettings

__all__ = ["DisplayedSpeedLimit", "SpeedLimitLifecycleManager", "SpeedLimitSettings"]
