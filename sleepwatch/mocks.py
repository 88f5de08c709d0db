"""Mock hardware implementations for testing without physical devices.

This module provides simulated versions of the camera, face detector,
display actuator and idle probe, so the whole controller can run without
a webcam, model files or a graphical session.

Enable mock mode by:
- Setting MOCK_HARDWARE=true environment variable, OR
- Setting mock_mode: true in config.yaml, OR
- Passing --mock on the command line
"""

import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from sleepwatch.capture.webcam import CaptureResult
from sleepwatch.models.detection import DetectedFace

logger = logging.getLogger(__name__)


def blank_frame(width: int = 640, height: int = 480) -> np.ndarray:
    """A black BGR frame of the given size."""
    return np.zeros((height, width, 3), dtype=np.uint8)


class MockVideoCapture:
    """Stand-in for cv2.VideoCapture.

    Attributes:
        opened: Whether the device "opened"
        read_ok: Whether read() returns a frame
        released: Whether release() was called
        props: Properties set via set()
    """

    def __init__(self, opened: bool = True, read_ok: bool = True, width: int = 640, height: int = 480):
        self.opened = opened
        self.read_ok = read_ok
        self.width = width
        self.height = height
        self.released = False
        self.props = {}
        self.reads = 0

    def isOpened(self) -> bool:
        return self.opened

    def set(self, prop_id, value) -> bool:
        self.props[prop_id] = value
        return True

    def read(self):
        self.reads += 1
        if not self.read_ok:
            return False, None
        return True, blank_frame(self.width, self.height)

    def release(self) -> None:
        self.released = True


class MockCaptureFactory:
    """Callable that hands out MockVideoCapture objects per attempt.

    ``outcomes`` scripts each attempt: True = good frame, False = empty
    read, None = device fails to open. Once the script is exhausted the
    ``default`` outcome is used.
    """

    def __init__(
        self,
        outcomes: Optional[Iterable[Optional[bool]]] = None,
        default: Optional[bool] = True,
        width: int = 640,
        height: int = 480,
    ):
        self._outcomes = list(outcomes or [])
        self.default = default
        self.width = width
        self.height = height
        self.captures: List[MockVideoCapture] = []
        self.device_ids: List[int] = []

    def __call__(self, device_id: int) -> MockVideoCapture:
        outcome = self._outcomes.pop(0) if self._outcomes else self.default
        capture = MockVideoCapture(
            opened=outcome is not None,
            read_ok=bool(outcome),
            width=self.width,
            height=self.height,
        )
        self.captures.append(capture)
        self.device_ids.append(device_id)
        return capture

    @property
    def attempts(self) -> int:
        return len(self.captures)


class MockCamera:
    """Camera returning a fixed capture result and counting calls."""

    def __init__(self, success: bool = True, width: int = 640, height: int = 480, attempts: int = 1):
        self.success = success
        self.width = width
        self.height = height
        self.attempts = attempts
        self.acquire_calls = 0

    def acquire(self) -> CaptureResult:
        self.acquire_calls += 1
        if not self.success:
            return CaptureResult(success=False, attempts=self.attempts, error="Empty frame from camera")
        return CaptureResult(
            success=True,
            frame=blank_frame(self.width, self.height),
            width=self.width,
            height=self.height,
            attempts=1,
        )


class MockFaceDetector:
    """Detector returning scripted faces.

    ``faces`` is either a fixed list returned on every call, or a callable
    taking the frame and returning the faces.
    """

    def __init__(self, faces=None):
        self._faces = faces if faces is not None else []
        self.detect_calls = 0
        self.frames: List[np.ndarray] = []

    def load_model(self) -> None:
        logger.info("MockFaceDetector: model loaded (simulated)")

    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        self.detect_calls += 1
        self.frames.append(frame)
        if callable(self._faces):
            return list(self._faces(frame))
        return list(self._faces)


def centered_face(
    frame_width: int,
    frame_height: int,
    area_fraction: float,
    confidence: float = 0.9,
) -> DetectedFace:
    """Build a square-ish face covering roughly area_fraction of the frame."""
    side_w = int(frame_width * area_fraction ** 0.5)
    side_h = int(frame_height * area_fraction ** 0.5)
    left = (frame_width - side_w) // 2
    top = (frame_height - side_h) // 2
    return DetectedFace(
        confidence=confidence,
        top=top,
        bottom=top + side_h,
        left=left,
        right=left + side_w,
    )


class MockDisplayActuator:
    """Records display sleep requests instead of running a command."""

    def __init__(self, succeed: bool = True, probe: Optional["MockIdleProbe"] = None):
        self.succeed = succeed
        self.probe = probe
        self.calls = 0

    def sleep_display(self) -> bool:
        self.calls += 1
        logger.info(f"MockDisplayActuator: display sleep (simulated, ok={self.succeed})")
        if self.succeed and self.probe is not None:
            self.probe.set_display_asleep(True)
        return self.succeed


class MockIdleProbe:
    """Simulated idle probe.

    In scripted mode, ``idle_values`` and ``asleep_values`` are consumed one
    per poll (the last value repeats). In simulate mode, idle time grows
    with the wall clock since the last ``simulate_activity()`` call.
    """

    name = "mock"

    def __init__(
        self,
        idle_values: Optional[Sequence[Optional[float]]] = None,
        asleep_values: Optional[Sequence[Optional[bool]]] = None,
        simulate: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._idle_values = list(idle_values or [])
        self._asleep_values = list(asleep_values or [])
        self.simulate = simulate
        self._clock = clock
        self._last_activity = clock()
        self._asleep = False
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

    def simulate_activity(self) -> None:
        """Pretend the user touched the keyboard, which also wakes the display."""
        with self._lock:
            self._last_activity = self._clock()
            self._asleep = False

    def set_display_asleep(self, asleep: bool) -> None:
        with self._lock:
            self._asleep = asleep

    @staticmethod
    def _next(values: List, fallback):
        if not values:
            return fallback
        if len(values) == 1:
            return values[0]
        return values.pop(0)

    def idle_seconds(self) -> Optional[float]:
        with self._lock:
            if self.simulate:
                return self._clock() - self._last_activity
            return self._next(self._idle_values, None)

    def display_asleep(self) -> Optional[bool]:
        with self._lock:
            if self.simulate:
                return self._asleep
            return self._next(self._asleep_values, None)
