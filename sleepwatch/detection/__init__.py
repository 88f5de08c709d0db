"""Face detection and presence decision modules."""

from sleepwatch.detection.face_detector import FaceDetector, decode_detections
from sleepwatch.detection.policy import PresencePolicy, is_present

__all__ = ["FaceDetector", "PresencePolicy", "decode_detections", "is_present"]
