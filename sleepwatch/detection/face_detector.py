"""Face detection with the OpenCV DNN module.

Runs the res10 SSD face detector (Caffe) on a single frame. The network
output is a flat sequence of fixed-width records; ``decode_detections``
turns it into pixel-space ``DetectedFace`` objects without applying any
threshold.
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from sleepwatch.errors import StartupError
from sleepwatch.models.detection import DetectedFace

logger = logging.getLogger(__name__)

# SSD output record layout: class id, label, confidence, left, top, right, bottom
RECORD_SIZE = 7
CONFIDENCE_OFFSET = 2
LEFT_OFFSET = 3
TOP_OFFSET = 4
RIGHT_OFFSET = 5
BOTTOM_OFFSET = 6


def decode_detections(output, frame_width: int, frame_height: int) -> List[DetectedFace]:
    """Decode raw detector output into faces in pixel coordinates.

    Args:
        output: Network output of any shape (typically 1x1xNx7); it is
            flattened and read as consecutive 7-float records
        frame_width: Width of the frame the detection ran on
        frame_height: Height of the frame the detection ran on

    Returns:
        One DetectedFace per complete record, in output order. Coordinates
        are truncated toward zero, never rounded.
    """
    flat = np.asarray(output, dtype=np.float32).ravel()
    count = flat.size // RECORD_SIZE
    if flat.size % RECORD_SIZE:
        logger.warning(
            f"Detector output has {flat.size % RECORD_SIZE} trailing values; ignoring partial record"
        )

    records = flat[: count * RECORD_SIZE].reshape(count, RECORD_SIZE)
    width = np.float32(frame_width)
    height = np.float32(frame_height)

    faces = []
    for record in records:
        faces.append(
            DetectedFace(
                confidence=float(record[CONFIDENCE_OFFSET]),
                left=int(record[LEFT_OFFSET] * width),
                top=int(record[TOP_OFFSET] * height),
                right=int(record[RIGHT_OFFSET] * width),
                bottom=int(record[BOTTOM_OFFSET] * height),
            )
        )
    return faces


class FaceDetector:
    """Face detector backed by a Caffe SSD model.

    Usage:
        detector = FaceDetector(model_path, config_path)
        detector.load_model()  # raises StartupError on failure
        faces = detector.detect(frame)
    """

    def __init__(
        self,
        model_path: Path,
        config_path: Path,
        input_size: int = 300,
        mean: Tuple[float, float, float] = (104.0, 177.0, 123.0),
        swap_rb: bool = False,
        scale: float = 1.0,
    ):
        """Initialize face detector.

        Args:
            model_path: Path to the .caffemodel weights
            config_path: Path to the deploy.prototxt network description
            input_size: Square input size expected by the network
            mean: Per-channel mean subtracted from the BGR input
            swap_rb: Whether to swap red and blue channels
            scale: Multiplier applied to pixel values
        """
        self.model_path = Path(model_path)
        self.config_path = Path(config_path)
        self.input_size = input_size
        self.mean = tuple(mean)
        self.swap_rb = swap_rb
        self.scale = scale
        self._net: Optional["cv2.dnn.Net"] = None

    @classmethod
    def from_config(cls, config) -> "FaceDetector":
        """Build a detector from the root Config, resolving model paths."""
        detection = config.detection
        return cls(
            model_path=config.resolve_path(detection.model_path),
            config_path=config.resolve_path(detection.config_path),
            input_size=detection.input_size,
            mean=detection.mean,
            swap_rb=detection.swap_rb,
        )

    @property
    def is_model_loaded(self) -> bool:
        """Check if model is loaded."""
        return self._net is not None

    def load_model(self) -> None:
        """Load the network and pin it to the CPU backend.

        Raises:
            StartupError: If the model files are missing or cannot be loaded
        """
        for path in (self.model_path, self.config_path):
            if not path.exists():
                raise StartupError(f"Face detection model file not found: {path}")

        start_time = time.time()
        try:
            net = cv2.dnn.readNet(str(self.model_path), str(self.config_path))
        except cv2.error as e:
            raise StartupError(
                f"Error reading neural network model from {self.model_path} {self.config_path}: {e}"
            ) from e

        if net.empty():
            raise StartupError(
                f"Error reading neural network model from {self.model_path} {self.config_path}"
            )

        net.setPreferableBackend(cv2.dnn.DNN_BACKEND_DEFAULT)
        net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        self._net = net

        logger.info(
            f"Face detection model loaded from {self.model_path.name} "
            f"in {time.time() - start_time:.2f}s"
        )

    def forward(self, frame: np.ndarray) -> np.ndarray:
        """Run one inference pass and return the raw network output."""
        if self._net is None:
            self.load_model()

        blob = cv2.dnn.blobFromImage(
            frame,
            self.scale,
            (self.input_size, self.input_size),
            self.mean,
            swapRB=self.swap_rb,
            crop=False,
        )
        self._net.setInput(blob)
        return self._net.forward()

    def detect(self, frame: np.ndarray) -> List[DetectedFace]:
        """Detect all faces in a frame.

        Args:
            frame: BGR image (OpenCV format); only read, never modified

        Returns:
            List of DetectedFace objects, unfiltered. Inference errors are
            logged and reported as no faces.
        """
        height, width = frame.shape[:2]
        start_time = time.time()

        try:
            output = self.forward(frame)
        except cv2.error as e:
            logger.error(f"Face detection inference failed: {e}")
            return []

        faces = decode_detections(output, width, height)
        logger.debug(
            f"Detector returned {len(faces)} candidates in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return faces


def log_faces(faces: Sequence[DetectedFace], frame_width: int, frame_height: int, limit: int = 5) -> None:
    """Log the first few detections with their area fraction."""
    for face in faces[:limit]:
        logger.info(
            f"Confidence {face.confidence:.3f} top {face.top} bottom {face.bottom} "
            f"left {face.left} right {face.right} "
            f"area {face.area_fraction(frame_width, frame_height):.3f}"
        )
