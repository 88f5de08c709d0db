"""Debug window showing the evaluated frame with accepted faces boxed."""

import logging
from typing import Sequence

import cv2
import numpy as np

from sleepwatch.models.detection import DetectedFace

logger = logging.getLogger(__name__)

BOX_COLOR = (0, 255, 0)  # BGR green
BOX_THICKNESS = 2


def draw_faces(frame: np.ndarray, faces: Sequence[DetectedFace]) -> np.ndarray:
    """Return a copy of frame with a rectangle drawn around each face."""
    canvas = frame.copy()
    for face in faces:
        cv2.rectangle(
            canvas,
            (face.left, face.top),
            (face.right, face.bottom),
            BOX_COLOR,
            BOX_THICKNESS,
        )
    return canvas


class DebugView:
    """OpenCV window opened lazily on the first frame shown."""

    def __init__(self, window_name: str = "DNN Detection"):
        self.window_name = window_name
        self._window_open = False

    def show(self, frame: np.ndarray, faces: Sequence[DetectedFace]) -> None:
        """Draw the faces that counted as present and display the frame."""
        try:
            if not self._window_open:
                cv2.namedWindow(self.window_name, cv2.WINDOW_AUTOSIZE)
                self._window_open = True
            cv2.imshow(self.window_name, draw_faces(frame, faces))
            cv2.waitKey(1)
        except cv2.error as e:
            logger.warning(f"Debug window unavailable: {e}")

    def close(self) -> None:
        if self._window_open:
            cv2.destroyWindow(self.window_name)
            self._window_open = False
