from unittest.mock import patch

import pytest

from watson_vision.capture import GStreamerCapture, StaticImageCapture, V4L2Capture
from watson_vision.config import ConfigError, VisionConfig
from watson_vision.factory import StrategyFactory
from watson_vision.resolver import MultiTargetPoseResolver, NullResolver


@pytest.mark.parametrize(
    "capture, expected",
    [
        ("gstreamer", GStreamerCapture),
        ("v4l2", V4L2Capture),
        ("static", StaticImageCapture),
    ],
)
def test_build_capture(capture, expected):
    cap = StrategyFactory.build_capture(VisionConfig(capture=capture, video_path="/dev/video0"))
    assert isinstance(cap, expected)


def test_build_capture_unknown():
    with pytest.raises(ConfigError):
        StrategyFactory.build_capture(VisionConfig(capture="firewire"))


def test_uncalibrated_camera_gets_null_resolver():
    with patch("watson_vision.factory.ArucoFiducialDetector") as det_cls:
        cap, det, loc = StrategyFactory.from_config(VisionConfig(capture="static"))

    det_cls.assert_called_once_with("apriltag_36h11")
    assert isinstance(cap, StaticImageCapture)
    assert det is det_cls.return_value
    assert isinstance(loc, NullResolver)


def test_calibrated_camera_gets_pose_resolver():
    cfg = VisionConfig(capture="static", has_calibration=True, fiducial_size_m=0.2)
    with patch("watson_vision.factory.ArucoFiducialDetector"):
        _cap, _det, loc = StrategyFactory.from_config(cfg)

    assert isinstance(loc, MultiTargetPoseResolver)
    assert loc.fiducial_size == 0.2
