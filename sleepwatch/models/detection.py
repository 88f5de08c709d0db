"""Data models for face detections and presence evaluation results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class DisplayState(Enum):
    """Display power state as reported by the OS."""

    AWAKE = "awake"
    ASLEEP = "asleep"


class PresenceState(Enum):
    """Presence state machine states."""

    IDLE_WAITING = "idle_waiting"  # Dormant until the next idle signal
    EVALUATING = "evaluating"  # Capturing and running detection


class EvaluationOutcome(Enum):
    """How a single idle signal was handled."""

    DISPLAY_ASLEEP = "display_asleep"  # Display already off, nothing to do
    BUSY = "busy"  # Another evaluation was still running
    PRESENT = "present"  # Someone is in front of the screen
    ABSENT = "absent"  # Nobody found, display put to sleep
    CAPTURE_FAILED = "capture_failed"  # Camera unreadable, display put to sleep
    ERROR = "error"  # Unexpected failure, display put to sleep


@dataclass(frozen=True)
class DetectedFace:
    """A single face found by the detector, in pixel coordinates.

    The detector does not guarantee ``bottom >= top`` or ``right >= left``;
    degenerate boxes simply produce a zero or negative area.
    """

    confidence: float
    top: int
    bottom: int
    left: int
    right: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def is_degenerate(self) -> bool:
        """True if the box is inverted on either axis."""
        return self.bottom < self.top or self.right < self.left

    @property
    def area(self) -> int:
        """Box area in pixels (negative for inverted boxes)."""
        return self.height * self.width

    def area_fraction(self, frame_width: int, frame_height: int) -> float:
        """Fraction of the frame covered by this face."""
        frame_area = frame_width * frame_height
        if frame_area <= 0:
            return 0.0
        return self.area / frame_area


@dataclass
class EvaluationResult:
    """Result of handling one idle signal."""

    outcome: EvaluationOutcome
    timestamp: datetime = field(default_factory=datetime.now)
    faces_detected: int = 0
    faces_present: int = 0
    frame_width: int = 0
    frame_height: int = 0
    capture_attempts: int = 0
    display_sleep_requested: bool = False
    display_sleep_succeeded: Optional[bool] = None
    elapsed_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "faces_detected": self.faces_detected,
            "faces_present": self.faces_present,
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
            "capture_attempts": self.capture_attempts,
            "display_sleep_requested": self.display_sleep_requested,
            "display_sleep_succeeded": self.display_sleep_succeeded,
            "elapsed_ms": self.elapsed_ms,
            "error": self.error,
        }


@dataclass
class MonitorStatus:
    """Snapshot of the presence state machine."""

    timestamp: datetime
    display_state: DisplayState
    presence_state: PresenceState
    idle_signals: int
    evaluations: int
    display_sleeps: int
    uptime_seconds: float
    last_result: Optional[EvaluationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "display_state": self.display_state.value,
            "presence_state": self.presence_state.value,
            "idle_signals": self.idle_signals,
            "evaluations": self.evaluations,
            "display_sleeps": self.display_sleeps,
            "uptime_seconds": self.uptime_seconds,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
