from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass
class Frame:
    idx: int
    acquired_at: float  # time.monotonic() at acquisition
    image: Any  # numpy array, BGR


@dataclass
class FiducialImageObservation:
    tag_id: int
    corners: np.ndarray  # (4,2) pixel corners, detector winding order


@dataclass
class CameraPoseObservation:
    """Field-to-camera pose hypotheses resolved from one frame.

    Poses are 4x4 homogeneous matrices in field axes. ``pose_1``/``error_1`` are
    only set for the ambiguous single-marker case.
    """

    tag_ids: list[int]
    pose_0: np.ndarray
    error_0: float
    pose_1: Optional[np.ndarray] = None
    error_1: Optional[float] = None

    @property
    def has_secondary(self) -> bool:
        return self.pose_1 is not None


@dataclass
class SessionOutcome:
    reason: str  # "stopped", "reconfigure" or "fault"
    frames: int = 0
    samples_sent: int = 0
    samples_dropped: int = 0
    previews_dropped: int = 0
    acquisition_errors: int = 0
    avg_fps: float = 0.0
    fault: Optional[BaseException] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.fault is None
