from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from .config import FieldLayout
from .transforms import camera_to_field, field_to_camera_point, invert_transform, transform_point
from .vision_types import CameraPoseObservation, FiducialImageObservation

logger = logging.getLogger(__name__)


def corner_offsets(fiducial_size: float) -> np.ndarray:
    """Marker corners in the marker's local Y-Z plane, detector winding order."""
    h = fiducial_size / 2.0
    return np.array(
        [
            [0.0, h, -h],
            [0.0, -h, -h],
            [0.0, -h, h],
            [0.0, h, h],
        ]
    )


class PoseResolver(ABC):
    @abstractmethod
    def resolve(
        self, observations: list[FiducialImageObservation]
    ) -> Optional[CameraPoseObservation]: ...


class NullResolver(PoseResolver):
    def resolve(self, observations) -> None:
        return None


class MultiTargetPoseResolver(PoseResolver):
    """
    Camera pose from every marker in view that the field layout knows about.

    One marker: the square-target solver returns both mirror hypotheses and both
    are reported. Several markers: a single solve over all corners in field
    coordinates gives a unique pose.
    """

    def __init__(self, layout: FieldLayout, fiducial_size: float, K, dist):
        self.layout = layout
        self.fiducial_size = fiducial_size
        self.K = np.asarray(K, dtype=np.float64)
        self.dist = np.asarray(dist, dtype=np.float64)
        self._offsets = corner_offsets(fiducial_size)

    def resolve(
        self, observations: list[FiducialImageObservation]
    ) -> Optional[CameraPoseObservation]:
        tag_ids: list[int] = []
        tag_poses: list[np.ndarray] = []
        object_points: list[np.ndarray] = []
        image_points: list[np.ndarray] = []

        for obs in observations:
            tag_pose = self.layout.pose(obs.tag_id)
            if tag_pose is None:
                continue
            for offset, pixel in zip(self._offsets, np.asarray(obs.corners).reshape(4, 2)):
                object_points.append(field_to_camera_point(transform_point(tag_pose, offset)))
                image_points.append(pixel)
            tag_ids.append(obs.tag_id)
            tag_poses.append(tag_pose)

        if not tag_ids:
            return None

        image_pts = np.asarray(image_points, dtype=np.float64)
        if len(tag_ids) == 1:
            return self._resolve_single(tag_ids, tag_poses[0], image_pts)
        return self._resolve_multi(tag_ids, np.asarray(object_points, dtype=np.float64), image_pts)

    def _solve(self, object_pts: np.ndarray, image_pts: np.ndarray, flags: int):
        try:
            _n, rvecs, tvecs, errors = cv2.solvePnPGeneric(
                object_pts, image_pts, self.K, self.dist, flags=flags
            )
        except cv2.error as exc:
            logger.warning("PnP solve failed: %s", exc)
            return None
        rvecs = list(rvecs) if rvecs is not None else []
        tvecs = list(tvecs) if tvecs is not None else []
        errors = np.asarray(errors, dtype=np.float64).reshape(-1) if errors is not None else np.zeros(0)
        return rvecs, tvecs, errors

    def _resolve_single(
        self, tag_ids: list[int], tag_pose: np.ndarray, image_pts: np.ndarray
    ) -> Optional[CameraPoseObservation]:
        # The square solver wants the marker-local corners, not field coordinates
        object_pts = np.array([field_to_camera_point(p) for p in self._offsets])
        solved = self._solve(object_pts, image_pts, cv2.SOLVEPNP_IPPE_SQUARE)
        if solved is None:
            return None
        rvecs, tvecs, errors = solved
        if len(rvecs) < 2 or len(tvecs) < 2 or len(errors) < 2:
            logger.warning("Square solver returned %d hypotheses, expected 2", len(rvecs))
            return None

        poses = [
            tag_pose @ invert_transform(camera_to_field(tvecs[i], rvecs[i]))
            for i in range(2)
        ]
        return CameraPoseObservation(
            tag_ids=tag_ids,
            pose_0=poses[0],
            error_0=float(errors[0]),
            pose_1=poses[1],
            error_1=float(errors[1]),
        )

    def _resolve_multi(
        self, tag_ids: list[int], object_pts: np.ndarray, image_pts: np.ndarray
    ) -> Optional[CameraPoseObservation]:
        solved = self._solve(object_pts, image_pts, cv2.SOLVEPNP_SQPNP)
        if solved is None:
            return None
        rvecs, tvecs, errors = solved
        if not rvecs or not tvecs:
            logger.warning("Multi-marker solver returned no solution")
            return None

        camera_to_field_pose = camera_to_field(tvecs[0], rvecs[0])
        return CameraPoseObservation(
            tag_ids=tag_ids,
            pose_0=invert_transform(camera_to_field_pose),
            error_0=float(errors[0]) if len(errors) else float("nan"),
        )
