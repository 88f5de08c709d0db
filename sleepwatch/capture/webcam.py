"""Still frame capture from a local webcam.

Grabs a single frame on demand. The device is opened fresh for every
attempt and released right after the read, so a bad read cannot leave the
driver in a broken state for the next attempt. A short stabilization delay
before each read lets auto exposure settle instead of returning a black or
half-adjusted frame.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Result of a frame capture operation."""

    success: bool = False
    frame: Optional[np.ndarray] = None
    width: int = 0
    height: int = 0
    attempts: int = 0
    capture_time_ms: float = 0.0
    error: Optional[str] = None


class WebcamCapture:
    """Captures still frames from a local camera device.

    Usage:
        capture = WebcamCapture(device_id=0)
        result = capture.acquire()
        if result.success:
            process(result.frame)
    """

    DEFAULT_MAX_ATTEMPTS = 10
    DEFAULT_STABILIZATION_SECONDS = 1.0
    DEFAULT_RETRY_DELAY_SECONDS = 0.2

    def __init__(
        self,
        device_id: int = 0,
        width: int = 640,
        height: int = 480,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        stabilization_seconds: float = DEFAULT_STABILIZATION_SECONDS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        capture_factory: Optional[Callable[[int], "cv2.VideoCapture"]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize webcam capture.

        Args:
            device_id: Camera device index
            width: Requested capture width in pixels
            height: Requested capture height in pixels
            max_attempts: Total read attempts before giving up
            stabilization_seconds: Delay between opening the device and reading
            retry_delay_seconds: Delay between failed attempts
            capture_factory: Callable returning an opened VideoCapture-like object
            sleep: Sleep function (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.device_id = device_id
        self.width = width
        self.height = height
        self.max_attempts = max_attempts
        self.stabilization_seconds = stabilization_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._sleep = sleep

    @classmethod
    def from_config(cls, camera_config, **kwargs) -> "WebcamCapture":
        """Build a capture from a CameraConfig section."""
        return cls(
            device_id=camera_config.device_id,
            width=camera_config.width,
            height=camera_config.height,
            max_attempts=camera_config.max_attempts,
            stabilization_seconds=camera_config.stabilization_seconds,
            retry_delay_seconds=camera_config.retry_delay_seconds,
            **kwargs,
        )

    def grab_frame(self) -> CaptureResult:
        """Open the device, wait for it to settle, read one frame and close it.

        Returns:
            CaptureResult with frame data or error
        """
        start_time = time.time()
        cap = None

        try:
            cap = self._capture_factory(self.device_id)

            if cap is None or not cap.isOpened():
                return CaptureResult(
                    success=False,
                    capture_time_ms=(time.time() - start_time) * 1000,
                    error=f"Cannot open camera device {self.device_id}",
                )

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

            self._sleep(self.stabilization_seconds)

            ok, frame = cap.read()
            elapsed = (time.time() - start_time) * 1000

            if not ok or frame is None or frame.size == 0:
                return CaptureResult(
                    success=False,
                    capture_time_ms=elapsed,
                    error="Empty frame from camera",
                )

            height, width = frame.shape[:2]
            logger.debug(f"Captured frame {width}x{height} in {elapsed:.0f}ms")

            return CaptureResult(
                success=True,
                frame=frame,
                width=width,
                height=height,
                capture_time_ms=elapsed,
            )

        except cv2.error as e:
            elapsed = (time.time() - start_time) * 1000
            logger.error(f"OpenCV error reading device {self.device_id}: {e}")
            return CaptureResult(success=False, capture_time_ms=elapsed, error=str(e))

        finally:
            if cap is not None:
                cap.release()

    def acquire(self) -> CaptureResult:
        """Grab a frame, retrying up to max_attempts times.

        Returns:
            CaptureResult from the first successful attempt, or the last
            failure once all attempts are used up. ``attempts`` records how
            many reads were made.
        """
        last_result = CaptureResult(success=False, error="No capture attempted")

        for attempt in range(1, self.max_attempts + 1):
            result = self.grab_frame()
            result.attempts = attempt

            if result.success:
                if attempt > 1:
                    logger.info(
                        f"Camera {self.device_id} capture succeeded on attempt "
                        f"{attempt}/{self.max_attempts}"
                    )
                return result

            last_result = result

            if attempt < self.max_attempts:
                logger.warning(
                    f"Camera {self.device_id} capture failed (attempt "
                    f"{attempt}/{self.max_attempts}): {result.error}. "
                    f"Retrying in {self.retry_delay_seconds}s..."
                )
                self._sleep(self.retry_delay_seconds)

        logger.error(
            f"Camera {self.device_id} capture failed after {self.max_attempts} attempts: "
            f"{last_result.error}"
        )
        return last_result
