"""Wire encodings produced by the pipeline.

Pose sample, big-endian::

    time:u32 | tag_count:i32 | tag_ids:i32[tag_count] | has_secondary:u8
    | primary: tx ty tz qw qx qy qz error (8 x f64)
    | secondary: same 8 x f64, only when has_secondary == 1

Preview chunk: one multipart part of the ``boundary=FRAME`` MJPEG stream.
"""

import struct
from typing import Optional

import cv2
import numpy as np

from .transforms import matrix_to_quaternion
from .vision_types import CameraPoseObservation

U32_MAX = 2**32 - 1
I32_MIN, I32_MAX = -(2**31), 2**31 - 1

_HEADER = struct.Struct(">Ii")
_TAG_ID = struct.Struct(">i")
_FLAG = struct.Struct(">B")
_POSE = struct.Struct(">8d")

PREVIEW_PART_HEADER = b"--FRAME\r\nContent-Type: image/jpeg\r\n\r\n"
PREVIEW_PART_TRAILER = b"\r\n"


class EncodeError(ValueError):
    pass


def pose_sample_length(tag_count: int, has_secondary: bool) -> int:
    return _HEADER.size + _TAG_ID.size * tag_count + _FLAG.size + _POSE.size * (2 if has_secondary else 1)


def _pack_pose(pose: np.ndarray, error: float) -> bytes:
    tx, ty, tz = (float(v) for v in pose[:3, 3])
    qw, qx, qy, qz = matrix_to_quaternion(pose)
    return _POSE.pack(tx, ty, tz, qw, qx, qy, qz, float(error))


def encode_pose_sample(sample_time: int, observation: CameraPoseObservation) -> bytes:
    if not 0 <= sample_time <= U32_MAX:
        raise EncodeError(f"sample time {sample_time} does not fit in u32")
    for tag_id in observation.tag_ids:
        if not I32_MIN <= tag_id <= I32_MAX:
            raise EncodeError(f"tag id {tag_id} does not fit in i32")

    parts = [_HEADER.pack(sample_time, len(observation.tag_ids))]
    parts.extend(_TAG_ID.pack(tag_id) for tag_id in observation.tag_ids)
    parts.append(_FLAG.pack(1 if observation.has_secondary else 0))
    parts.append(_pack_pose(observation.pose_0, observation.error_0))
    if observation.has_secondary:
        error_1 = observation.error_1 if observation.error_1 is not None else float("nan")
        parts.append(_pack_pose(observation.pose_1, error_1))
    return b"".join(parts)


def encode_preview_chunk(image) -> Optional[bytes]:
    ok, jpeg = cv2.imencode(".jpg", image)
    if not ok:
        return None
    return PREVIEW_PART_HEADER + jpeg.tobytes() + PREVIEW_PART_TRAILER
