from abc import ABC, abstractmethod

import cv2
import numpy as np

from .config import ConfigError
from .vision_types import FiducialImageObservation

DICTIONARIES = {
    "apriltag_16h5": "DICT_APRILTAG_16h5",
    "apriltag_25h9": "DICT_APRILTAG_25h9",
    "apriltag_36h10": "DICT_APRILTAG_36h10",
    "apriltag_36h11": "DICT_APRILTAG_36h11",
    "4x4_50": "DICT_4X4_50",
    "4x4_100": "DICT_4X4_100",
    "5x5_50": "DICT_5X5_50",
    "5x5_100": "DICT_5X5_100",
    "6x6_50": "DICT_6X6_50",
    "6x6_100": "DICT_6X6_100",
    "7x7_50": "DICT_7X7_50",
    "7x7_100": "DICT_7X7_100",
}


def get_dict(name: str):
    """
    Resolve a predefined AprilTag/ArUco dictionary by name.
    Accepts "apriltag_36h11" as well as "DICT_APRILTAG_36h11".
    Works on OpenCV >= 4.7 (getPredefinedDictionary) and older (Dictionary_get).
    """
    key = (name or "").strip()
    if key.upper().startswith("DICT_"):
        key = key[5:]
    key = key.lower()
    if key not in DICTIONARIES:
        raise ConfigError(f"Unknown fiducial dictionary: {name!r}")
    code = getattr(cv2.aruco, DICTIONARIES[key])

    if hasattr(cv2.aruco, "getPredefinedDictionary"):           # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)                        # Older OpenCV


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


class FiducialDetector(ABC):
    @abstractmethod
    def detect(self, image) -> list[FiducialImageObservation]: ...


class ArucoFiducialDetector(FiducialDetector):
    """
    Detects AprilTag/ArUco markers and outlines them on the frame in place,
    so the preview stream shows what the resolver saw.
    """
    def __init__(self, dict_name: str = "apriltag_36h11", annotate: bool = True):
        self.dictionary = get_dict(dict_name)
        self.params = _make_params()
        self.annotate = annotate
        self._detector = None
        # Prefer the newer ArucoDetector API if present
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def detect(self, image) -> list[FiducialImageObservation]:
        if self._detector is not None:
            corners, ids, _rej = self._detector.detectMarkers(image)
        else:
            corners, ids, _rej = cv2.aruco.detectMarkers(
                image, self.dictionary, parameters=self.params
            )

        if ids is None or len(ids) == 0:
            return []

        if self.annotate:
            cv2.aruco.drawDetectedMarkers(image, corners, ids, (0, 255, 0))

        return [
            FiducialImageObservation(
                int(mid),
                np.asarray(corners[i], dtype=np.float64).reshape(4, 2),
            )
            for i, mid in enumerate(ids.flatten())
        ]
