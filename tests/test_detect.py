from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from watson_vision.config import ConfigError
from watson_vision.detect import ArucoFiducialDetector, get_dict


def test_get_dict_accepts_both_spellings():
    assert get_dict("apriltag_36h11") is not None
    assert get_dict("DICT_APRILTAG_36h11") is not None


def test_get_dict_unknown():
    with pytest.raises(ConfigError):
        get_dict("qr_code")


def test_detect_without_markers():
    det = ArucoFiducialDetector("apriltag_36h11")
    assert det.detect(np.full((120, 160, 3), 255, dtype=np.uint8)) == []


def test_detect_converts_corners():
    det = ArucoFiducialDetector("apriltag_36h11")
    corners = (np.array([[[1, 2], [3, 4], [5, 6], [7, 8]]], dtype=np.float32),)
    ids = np.array([[5]])
    det._detector = MagicMock()
    det._detector.detectMarkers.return_value = (corners, ids, ())

    image = np.zeros((10, 10, 3), dtype=np.uint8)
    with patch("watson_vision.detect.cv2.aruco.drawDetectedMarkers") as draw:
        result = det.detect(image)

    draw.assert_called_once()
    assert len(result) == 1
    assert result[0].tag_id == 5
    assert result[0].corners.shape == (4, 2)
    assert result[0].corners.dtype == np.float64
    assert result[0].corners[3].tolist() == [7.0, 8.0]


def test_detect_generated_marker():
    """A rendered tag is found with its id."""
    dictionary = get_dict("apriltag_36h11")
    marker = cv2.aruco.generateImageMarker(dictionary, 3, 200)
    canvas = np.full((400, 400), 255, dtype=np.uint8)
    canvas[100:300, 100:300] = marker
    image = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    result = ArucoFiducialDetector("apriltag_36h11", annotate=False).detect(image)

    assert [r.tag_id for r in result] == [3]
    xs = result[0].corners[:, 0]
    assert xs.min() == pytest.approx(100, abs=3)
    assert xs.max() == pytest.approx(300, abs=3)
