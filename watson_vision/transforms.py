"""SE(3) helpers and the axis conventions shared by the solver and the field.

OpenCV works in camera axes (x right, y down, z forward). The field and robot use
x forward, y left, z up. Rigid transforms are 4x4 homogeneous matrices.
"""

import numpy as np
import cv2
from scipy.spatial.transform import Rotation
from typing import Sequence, Tuple


def rvec_tvec_to_matrix(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """
    Convert rotation vector and translation vector to 4x4 transformation matrix.

    Args:
        rvec: Rotation vector (3,) or (3,1)
        tvec: Translation vector (3,) or (3,1)

    Returns:
        4x4 homogeneous transformation matrix
    """
    rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
    tvec = np.asarray(tvec, dtype=np.float64).reshape(3)

    R, _ = cv2.Rodrigues(rvec)

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = tvec

    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """
    Invert a 4x4 homogeneous transformation matrix.

    For SE(3): T^-1 = [R^T, -R^T * t; 0, 1]

    Args:
        T: 4x4 transformation matrix

    Returns:
        4x4 inverted transformation matrix
    """
    T_inv = np.eye(4)
    R = T[:3, :3]
    t = T[:3, 3]

    R_T = R.T
    T_inv[:3, :3] = R_T
    T_inv[:3, 3] = -R_T @ t

    return T_inv


def transform_point(T: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """Apply a 4x4 transform to a 3D point."""
    p = np.asarray(point, dtype=np.float64).reshape(3)
    return T[:3, :3] @ p + T[:3, 3]


def camera_to_field(tvec: Sequence[float], rvec: Sequence[float]) -> np.ndarray:
    """
    Re-express an OpenCV (tvec, rvec) pair in field axes.

    Translation (tx, ty, tz) becomes (tz, -tx, -ty) and the rotation vector
    (rx, ry, rz) becomes (rz, -rx, -ry).

    Returns:
        4x4 transformation matrix in field axes
    """
    tx, ty, tz = np.asarray(tvec, dtype=np.float64).reshape(3)
    rx, ry, rz = np.asarray(rvec, dtype=np.float64).reshape(3)
    return rvec_tvec_to_matrix(
        np.array([rz, -rx, -ry]),
        np.array([tz, -tx, -ty]),
    )


def field_to_camera_point(point: Sequence[float]) -> np.ndarray:
    """Field-axes point (x, y, z) to OpenCV axes (-y, -z, x)."""
    x, y, z = np.asarray(point, dtype=np.float64).reshape(3)
    return np.array([-y, -z, x])


def pose_from_quaternion(translation: Sequence[float], quat_wxyz: Sequence[float]) -> np.ndarray:
    """
    Build a 4x4 pose from a translation and a (w, x, y, z) quaternion.

    The quaternion is normalized. A zero quaternion raises ValueError.
    """
    w, x, y, z = (float(v) for v in quat_wxyz)
    R = Rotation.from_quat([x, y, z, w]).as_matrix()

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(translation, dtype=np.float64).reshape(3)
    return T


def matrix_to_quaternion(T: np.ndarray) -> Tuple[float, float, float, float]:
    """Rotation part of a 4x4 pose as a unit quaternion (w, x, y, z), w >= 0."""
    x, y, z, w = Rotation.from_matrix(T[:3, :3]).as_quat(canonical=True)
    return float(w), float(x), float(y), float(z)
