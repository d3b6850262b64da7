"""Frame acquisition backends.

Every backend implements the same three-call lifecycle: ``start`` opens the device,
``read`` returns the next :class:`Frame` (or ``None`` on a transient failure the
caller should retry), and ``stop`` releases the device. A backend that decides its
device is unusable raises :class:`CaptureError`, which ends the pipeline session.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import cv2
import numpy as np

from .vision_types import Frame

logger = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    pass


class BaseCapture(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def read(self) -> Frame | None: ...

    @abstractmethod
    def stop(self) -> None: ...


def gstreamer_pipeline(
    video_path: str,
    width: int,
    height: int,
    auto_exposure: int,
    exposure: int,
    gain: int,
) -> str:
    return (
        f"v4l2src device={video_path} "
        f'extra_controls="c,exposure_auto={auto_exposure},exposure_absolute={exposure},'
        f'gain={gain},sharpness=0,brightness=0" ! '
        f"image/jpeg,format=MJPG,width={width},height={height} ! "
        f"jpegdec ! video/x-raw ! appsink drop=1"
    )


class GStreamerCapture(BaseCapture):
    """MJPEG V4L2 camera decoded through an OpenCV GStreamer pipeline.

    An empty ``video_path`` means no camera is assigned yet: nothing is opened and
    reads return ``None`` until the configuration names a device.
    """

    def __init__(
        self,
        video_path: str,
        width: int,
        height: int,
        auto_exposure: int,
        exposure: int,
        gain: int,
    ):
        self.video_path = video_path
        self.width = width
        self.height = height
        self.auto_exposure = auto_exposure
        self.exposure = exposure
        self.gain = gain
        self.cap: Any = None
        self.frame_id = 0

    def start(self) -> None:
        if not self.video_path:
            logger.warning("No camera device configured, waiting to start capture session")
            return

        logger.info("Starting capture session on %s", self.video_path)
        pipeline = gstreamer_pipeline(
            self.video_path,
            self.width,
            self.height,
            self.auto_exposure,
            self.exposure,
            self.gain,
        )
        self.cap = cv2.VideoCapture(pipeline, cv2.CAP_GSTREAMER)
        if not self.cap.isOpened():
            raise CaptureError(f"Failed to open GStreamer pipeline for {self.video_path}")
        self.frame_id = 0
        logger.info("Capture session ready")

    def read(self) -> Frame | None:
        if self.cap is None:
            return None

        ok, img = self.cap.read()
        acquired_at = time.monotonic()
        if not ok:
            raise CaptureError("Capture session failed, restarting")

        self.frame_id += 1
        return Frame(self.frame_id, acquired_at, img)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class V4L2Capture(BaseCapture):
    def __init__(
        self,
        device: int | str,
        width: int,
        height: int,
        auto_exposure: int,
        exposure: int,
        gain: int,
    ):
        self.device = device
        self.width = width
        self.height = height
        self.auto_exposure = auto_exposure
        self.exposure = exposure
        self.gain = gain
        self.cap: Any = None
        self.frame_id = 0

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device, cv2.CAP_V4L2)
        else:
            dev_str = str(self.device)
            match = re.match(r"^(?:/dev/video)?(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(dev_str)

        if not self.cap.isOpened():
            raise CaptureError(f"Failed to open camera: {self.device}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, self.auto_exposure)
        self.cap.set(cv2.CAP_PROP_EXPOSURE, self.exposure)
        self.cap.set(cv2.CAP_PROP_GAIN, self.gain)
        self.frame_id = 0

    def read(self) -> Frame | None:
        if self.cap is None:
            return None

        ok, img = self.cap.read()
        acquired_at = time.monotonic()
        if not ok:
            return None

        self.frame_id += 1
        return Frame(self.frame_id, acquired_at, img)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class StaticImageCapture(BaseCapture):
    """Replays one still image (or a blank frame) at a fixed rate."""

    def __init__(self, image_path: str, fps: int, width: int, height: int):
        self.image_path = image_path
        self.fps = fps
        self.width = width
        self.height = height
        self.image: Optional[np.ndarray] = None
        self.frame_id = 0
        self._last = 0.0

    def start(self) -> None:
        if self.image_path:
            self.image = cv2.imread(self.image_path, cv2.IMREAD_COLOR)
            if self.image is None:
                raise CaptureError(f"Failed to read test image: {self.image_path}")
        else:
            self.image = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        self.frame_id = 0
        self._last = time.monotonic()

    def read(self) -> Frame | None:
        if self.image is None:
            return None

        if self.fps > 0:
            wait = (1.0 / self.fps) - (time.monotonic() - self._last)
            if wait > 0:
                time.sleep(wait)
        self._last = time.monotonic()
        self.frame_id += 1
        return Frame(self.frame_id, self._last, self.image.copy())

    def stop(self) -> None:
        self.image = None
