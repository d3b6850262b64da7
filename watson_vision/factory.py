import logging

from .capture import BaseCapture, GStreamerCapture, StaticImageCapture, V4L2Capture
from .config import ConfigError, VisionConfig
from .detect import ArucoFiducialDetector
from .resolver import MultiTargetPoseResolver, NullResolver

logger = logging.getLogger(__name__)


class StrategyFactory:
    @staticmethod
    def build_capture(config: VisionConfig) -> BaseCapture:
        backend = config.resolved_capture()
        if backend == "gstreamer":
            return GStreamerCapture(
                config.video_path,
                config.width,
                config.height,
                config.auto_exposure,
                config.exposure,
                config.gain,
            )
        if backend == "v4l2":
            return V4L2Capture(
                config.video_path or 0,
                config.width,
                config.height,
                config.auto_exposure,
                config.exposure,
                config.gain,
            )
        if backend == "static":
            return StaticImageCapture(config.static_image, config.fps, config.width, config.height)
        raise ConfigError(f"Unknown capture backend: {backend}")

    @staticmethod
    def from_config(config: VisionConfig):
        cap = StrategyFactory.build_capture(config)
        det = ArucoFiducialDetector(config.fiducial_dict)

        if config.has_calibration:
            loc = MultiTargetPoseResolver(
                config.tag_layout,
                config.fiducial_size_m,
                config.camera_matrix,
                config.distortion_coefficients,
            )
        else:
            logger.warning("Camera has no calibration, pose resolution disabled")
            loc = NullResolver()

        return cap, det, loc
