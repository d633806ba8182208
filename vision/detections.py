"""Stable perception schemas for the sign reading pipeline.

Bounding boxes are normalized to the source frame dimensions and represented as
``(x, y, width, height)`` with the origin in the top-left corner of the frame
and each value in the inclusive range ``[0.0, 1.0]``.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any

import numpy as np


def _check_unit_interval(name: str, value: float) -> None:
    if math.isnan(value) or not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


@dataclass(frozen=True)
class BoundingBox:
    """Normalized rectangle relative to frame bounds."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            _check_unit_interval(name, float(getattr(self, name)))
        if self.width <= 0.0 or self.height <= 0.0:
            raise ValueError(
                f"bounding box must have positive size, got {self.width}x{self.height}"
            )
        # Tolerate float noise from trackers reporting boxes flush with an edge.
        if self.x + self.width > 1.0 + 1e-6 or self.y + self.height > 1.0 + 1e-6:
            raise ValueError(f"bounding box {self.as_tuple()} exceeds the unit square")

    @classmethod
    def clamped(cls, x: float, y: float, width: float, height: float) -> "BoundingBox | None":
        """Clip raw provider coordinates into the unit square.

        Returns ``None`` when nothing of the box remains inside the frame.
        """

        left = max(0.0, min(1.0, x))
        top = max(0.0, min(1.0, y))
        right = max(0.0, min(1.0, x + width))
        bottom = max(0.0, min(1.0, y + height))
        if right - left <= 0.0 or bottom - top <= 0.0:
            return None
        return cls(x=left, y=top, width=right - left, height=bottom - top)

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2.0

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    def to_pixel_rect(self, frame_width: int, frame_height: int) -> tuple[int, int, int, int]:
        """Return ``(left, top, right, bottom)`` pixel bounds for a frame size."""

        left = int(round(self.x * frame_width))
        top = int(round(self.y * frame_height))
        right = int(round((self.x + self.width) * frame_width))
        bottom = int(round((self.y + self.height) * frame_height))
        right = min(max(right, left + 1), frame_width)
        bottom = min(max(bottom, top + 1), frame_height)
        return (left, top, right, bottom)

    def pixel_aspect_ratio(self, frame_width: int, frame_height: int) -> float:
        """Return width/height measured in pixels rather than normalized units."""

        return (self.width * frame_width) / (self.height * frame_height)

    def escapes(self, margin: float) -> bool:
        """Return whether the box has left the central zone bounded by ``margin``."""

        return (
            abs(self.mid_x - 0.5) > 0.5 - margin - self.width / 2.0
            or abs(self.mid_y - 0.5) > 0.5 - margin - self.height / 2.0
        )


@dataclass(frozen=True)
class ObjectObservation:
    """Single detector or tracker output."""

    bounding_box: BoundingBox
    confidence: float

    def __post_init__(self) -> None:
        if not isinstance(self.bounding_box, BoundingBox):
            raise TypeError(
                f"bounding_box must be BoundingBox, got {type(self.bounding_box).__name__}"
            )
        _check_unit_interval("confidence", float(self.confidence))


@dataclass(frozen=True)
class TextCandidate:
    """Candidate string produced by a text recognizer."""

    text: str
    confidence: float

    def __post_init__(self) -> None:
        _check_unit_interval("confidence", float(self.confidence))


@dataclass(frozen=True)
class Frame:
    """Image buffer borrowed from the capture layer for one processing step."""

    image: Any
    width: int
    height: int
    frame_id: int | None = None
    timestamp: float | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"frame size must be positive, got {self.width}x{self.height}")

    @classmethod
    def from_array(
        cls,
        image: Any,
        frame_id: int | None = None,
        timestamp: float | None = None,
    ) -> "Frame":
        """Wrap an ``H x W [x C]`` array, taking the size from its shape."""

        array = np.asarray(image)
        if array.ndim < 2:
            raise ValueError(f"frame array needs at least two dimensions, got {array.ndim}")
        height, width = array.shape[:2]
        return cls(image=array, width=int(width), height=int(height), frame_id=frame_id, timestamp=timestamp)

    def crop(self, bounding_box: BoundingBox) -> np.ndarray:
        """Return a copy of the region covered by ``bounding_box``."""

        array = np.asarray(self.image)
        left, top, right, bottom = bounding_box.to_pixel_rect(self.width, self.height)
        return array[top:bottom, left:right].copy()
