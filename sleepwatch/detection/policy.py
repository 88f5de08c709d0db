"""Presence decision from face detections.

A face counts as a person in front of the screen when the detector is
confident enough (strictly above the threshold) and the face is large
enough (at least the minimum fraction of the frame). Boxes inverted on
either axis never count, even when both axes flip and the area comes out
positive.
"""

import logging
from typing import List, Sequence

import numpy as np

from sleepwatch.models.detection import DetectedFace

logger = logging.getLogger(__name__)


class PresencePolicy:
    """Confidence and area thresholds for presence decisions.

    Attributes:
        confidence_threshold: Confidence must be strictly greater than this
        min_area_fraction: Face area / frame area must be at least this
    """

    def __init__(self, confidence_threshold: float = 0.25, min_area_fraction: float = 0.05):
        self.confidence_threshold = confidence_threshold
        self.min_area_fraction = min_area_fraction

    @classmethod
    def from_config(cls, detection_config) -> "PresencePolicy":
        return cls(
            confidence_threshold=detection_config.confidence_threshold,
            min_area_fraction=detection_config.min_face_area_fraction,
        )

    def counts(self, face: DetectedFace, frame_width: int, frame_height: int) -> bool:
        """Whether a single face counts as someone present."""
        if frame_width * frame_height <= 0 or face.is_degenerate:
            return False
        # Detector confidences are float32, so compare at that precision
        return bool(
            np.float32(face.confidence) > np.float32(self.confidence_threshold)
            and face.area_fraction(frame_width, frame_height) >= self.min_area_fraction
        )

    def present_faces(
        self,
        faces: Sequence[DetectedFace],
        frame_width: int,
        frame_height: int,
    ) -> List[DetectedFace]:
        """Faces that pass both thresholds, in input order."""
        if frame_width * frame_height <= 0:
            logger.warning(f"Invalid frame size {frame_width}x{frame_height}; no face can count")
            return []
        return [face for face in faces if self.counts(face, frame_width, frame_height)]

    def is_present(
        self,
        faces: Sequence[DetectedFace],
        frame_width: int,
        frame_height: int,
    ) -> bool:
        """True if at least one face passes both thresholds."""
        return any(self.counts(face, frame_width, frame_height) for face in faces)

    def __repr__(self) -> str:
        return (
            f"PresencePolicy(confidence>{self.confidence_threshold}, "
            f"area>={self.min_area_fraction})"
        )


def is_present(
    faces: Sequence[DetectedFace],
    frame_width: int,
    frame_height: int,
    confidence_threshold: float,
    min_area_fraction: float,
) -> bool:
    """Functional form of PresencePolicy.is_present."""
    return PresencePolicy(confidence_threshold, min_area_fraction).is_present(
        faces, frame_width, frame_height
    )
