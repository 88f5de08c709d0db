"""Camera capture modules."""

from sleepwatch.capture.webcam import CaptureResult, WebcamCapture

__all__ = ["CaptureResult", "WebcamCapture"]
