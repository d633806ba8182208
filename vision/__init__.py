"""Vision package exports."""

from vision.detections import BoundingBox, Frame, ObjectObservation, TextCandidate
from vision.detector_state import DetectorPhase, DetectorSettings, DetectorStateMachine
from vision.normalization import VALID_SPEED_LIMITS, NormalizationEngine, normalize
from vision.perception import Capability, PerceptionGateway, PerceptionResult

__all__ = [
    "BoundingBox",
    "Capability",
    "DetectorPhase",
    "DetectorSettings",
    "DetectorStateMachine",
    "Frame",
    "NormalizationEngine",
    "ObjectObservation",
    "PerceptionGateway",
    "PerceptionResult",
    "TextCandidate",
    "VALID_SPEED_LIMITS",
    "normalize",
]
