"""Data models for detection results and controller state."""

from sleepwatch.models.detection import (
    DetectedFace,
    DisplayState,
    EvaluationOutcome,
    EvaluationResult,
    MonitorStatus,
    PresenceState,
)

__all__ = [
    "DetectedFace",
    "DisplayState",
    "EvaluationOutcome",
    "EvaluationResult",
    "MonitorStatus",
    "PresenceState",
]
