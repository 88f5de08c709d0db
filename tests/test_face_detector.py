"""Tests for detector output decoding and the OpenCV detector wrapper."""

import cv2
import numpy as np
import pytest

from sleepwatch.detection.face_detector import FaceDetector, decode_detections
from sleepwatch.errors import StartupError
from sleepwatch.mocks import blank_frame


def ssd_output(*records):
    """Build a 1x1xNx7 array like the res10 SSD detector returns."""
    return np.array(records, dtype=np.float32).reshape(1, 1, len(records), 7)


class FakeNet:
    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error
        self.blobs = []

    def setInput(self, blob, name=""):
        self.blobs.append(blob)

    def forward(self, name=None):
        if self.error is not None:
            raise self.error
        return self.output


class TestDecodeDetections:
    def test_converts_normalized_coordinates_to_pixels(self):
        output = ssd_output([0, 1, 0.9, 0.25, 0.5, 0.75, 1.0])
        faces = decode_detections(output, 640, 480)

        assert len(faces) == 1
        f = faces[0]
        assert f.confidence == pytest.approx(0.9)
        assert (f.left, f.top, f.right, f.bottom) == (160, 240, 480, 480)

    def test_truncates_toward_zero(self):
        output = ssd_output([0, 1, 0.5, 0.5, 0.5, -0.01, 0.999])
        f = decode_detections(output, 641, 481)[0]

        assert f.left == 320   # 320.5
        assert f.top == 240    # 240.5
        assert f.right == -6   # -6.41
        assert f.bottom == 480  # 480.519

    def test_reads_each_record_at_its_own_offset(self):
        output = ssd_output(
            [0, 1, 0.10, 0.0, 0.0, 0.1, 0.1],
            [0, 1, 0.80, 0.25, 0.25, 0.5, 0.75],
            [0, 1, 0.30, 0.5, 0.5, 0.5, 0.5],
        )
        faces = decode_detections(output, 100, 100)

        assert [round(f.confidence, 2) for f in faces] == [0.10, 0.80, 0.30]
        assert (faces[1].left, faces[1].top, faces[1].right, faces[1].bottom) == (25, 25, 50, 75)

    def test_keeps_low_confidence_records(self):
        output = ssd_output([0, 1, 0.0, 0, 0, 0, 0], [0, 1, 0.01, 0.1, 0.1, 0.2, 0.2])
        assert len(decode_detections(output, 300, 300)) == 2

    def test_ignores_trailing_partial_record(self):
        flat = np.zeros(7 * 2 + 3, dtype=np.float32)
        flat[2] = 0.7
        flat[9] = 0.6
        faces = decode_detections(flat, 10, 10)
        assert [round(f.confidence, 1) for f in faces] == [0.7, 0.6]

    def test_empty_output(self):
        assert decode_detections(np.zeros((1, 1, 0, 7), dtype=np.float32), 640, 480) == []


class TestFaceDetector:
    def test_missing_model_files_is_startup_error(self, tmp_path):
        detector = FaceDetector(tmp_path / "missing.caffemodel", tmp_path / "missing.prototxt")
        with pytest.raises(StartupError):
            detector.load_model()
        assert not detector.is_model_loaded

    def test_detect_runs_network_on_frame(self):
        detector = FaceDetector("model.caffemodel", "deploy.prototxt")
        net = FakeNet(output=ssd_output([0, 1, 0.95, 0.125, 0.125, 0.5, 0.75]))
        detector._net = net

        faces = detector.detect(blank_frame(640, 480))

        assert len(net.blobs) == 1
        assert net.blobs[0].shape == (1, 3, 300, 300)
        assert len(faces) == 1
        assert (faces[0].left, faces[0].right) == (80, 320)
        assert (faces[0].top, faces[0].bottom) == (60, 360)

    def test_inference_error_returns_no_faces(self):
        detector = FaceDetector("model.caffemodel", "deploy.prototxt")
        detector._net = FakeNet(error=cv2.error("forward failed"))

        assert detector.detect(blank_frame(320, 240)) == []

    def test_detect_does_not_modify_frame(self):
        detector = FaceDetector("model.caffemodel", "deploy.prototxt")
        detector._net = FakeNet(output=ssd_output([0, 1, 0.95, 0.125, 0.125, 0.5, 0.75]))
        frame = blank_frame(64, 48)
        frame[10, 10] = (1, 2, 3)
        before = frame.copy()

        detector.detect(frame)

        assert np.array_equal(frame, before)
