from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .transforms import pose_from_quaternion

INT32_MAX = 2**31 - 1

ACQUISITION_FIELDS = (
    "capture",
    "video_path",
    "static_image",
    "width",
    "height",
    "auto_exposure",
    "exposure",
    "gain",
)


class ConfigError(ValueError):
    pass


@dataclass
class FieldLayout:
    """Known marker poses (4x4, field axes) keyed by marker id."""

    tags: dict[int, np.ndarray] = field(default_factory=dict)

    def pose(self, tag_id: int) -> Optional[np.ndarray]:
        return self.tags.get(tag_id)

    def __contains__(self, tag_id: int) -> bool:
        return tag_id in self.tags

    def __len__(self) -> int:
        return len(self.tags)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldLayout):
            return NotImplemented
        if self.tags.keys() != other.tags.keys():
            return False
        return all(np.array_equal(self.tags[k], other.tags[k]) for k in self.tags)


@dataclass(eq=False)
class VisionConfig:
    camera_name: str = "camera"
    capture: str = "auto"  # "auto", "gstreamer", "v4l2", "static"
    video_path: str = ""
    static_image: str = ""
    fps: int = 30
    width: int = 1280
    height: int = 720
    auto_exposure: int = 1
    exposure: int = 50
    gain: int = 0
    fiducial_size_m: float = 0.1651
    fiducial_dict: str = "apriltag_36h11"
    server_ip: str = "127.0.0.1"
    server_port: int = 5810
    stream_host: str = ""
    stream_port: int = 3000
    has_calibration: bool = False
    camera_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))
    distortion_coefficients: np.ndarray = field(default_factory=lambda: np.zeros(5))
    tag_layout: FieldLayout = field(default_factory=FieldLayout)
    reload_interval_s: float = 2.0
    log_level: str = "INFO"

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                value = value.tolist()
            elif isinstance(value, FieldLayout):
                value = sorted(value.tags)
            out[f.name] = value
        return out

    def apply_overrides(self, **kwargs: Any) -> "VisionConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def resolved_capture(self) -> str:
        if self.capture != "auto":
            return self.capture
        return "gstreamer" if sys.platform.startswith("linux") else "static"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VisionConfig):
            return NotImplemented
        for f in fields(self):
            a, b = getattr(self, f.name), getattr(other, f.name)
            if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
                if not np.array_equal(a, b):
                    return False
            elif a != b:
                return False
        return True


def acquisition_changed(a: Optional[VisionConfig], b: Optional[VisionConfig]) -> bool:
    if a is None or b is None:
        return a is not b
    return any(getattr(a, name) != getattr(b, name) for name in ACQUISITION_FIELDS)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ConfigError("YAML config root must be a mapping")
    return data


def _load_document(path: Path) -> dict[str, Any]:
    if path.suffix.lower() in {".yaml", ".yml"}:
        return _load_yaml(path)
    with path.open("r", encoding="utf-8") as fp:
        try:
            raw = json.load(fp)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a JSON/YAML object")
    return raw


def _parse_matrix(value: Any) -> np.ndarray:
    try:
        mat = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"camera_matrix must be numeric: {exc}") from exc
    if mat.size != 9:
        raise ConfigError("camera_matrix must hold 9 values (row-major 3x3)")
    return mat.reshape(3, 3)


def _parse_vector(value: Any) -> np.ndarray:
    try:
        vec = np.asarray(value, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"distortion_coefficients must be numeric: {exc}") from exc
    return vec


def parse_layout(raw: Any) -> FieldLayout:
    """Parse a WPILib-style field layout document (``{"tags": [...]}``)."""
    if not isinstance(raw, dict) or not isinstance(raw.get("tags", []), list):
        raise ConfigError("tag_layout must be an object with a 'tags' list")

    layout = FieldLayout()
    for entry in raw.get("tags", []):
        try:
            tag_id = int(entry["ID"])
            translation = entry["pose"]["translation"]
            quat = entry["pose"]["rotation"]["quaternion"]
            t = (float(translation["x"]), float(translation["y"]), float(translation["z"]))
            q = (float(quat["W"]), float(quat["X"]), float(quat["Y"]), float(quat["Z"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Malformed tag layout entry {entry!r}: {exc}") from exc

        if not 0 <= tag_id <= INT32_MAX:
            raise ConfigError(f"Tag id {tag_id} outside the 32-bit wire range")
        if tag_id in layout:
            raise ConfigError(f"Duplicate tag id {tag_id} in layout")
        try:
            layout.tags[tag_id] = pose_from_quaternion(t, q)
        except ValueError as exc:
            raise ConfigError(f"Tag {tag_id} has an invalid rotation: {exc}") from exc
    return layout


def _load_layout(value: Any, base_dir: Path) -> FieldLayout:
    if isinstance(value, str):
        layout_path = Path(value)
        if not layout_path.is_absolute():
            layout_path = base_dir / layout_path
        if not layout_path.exists():
            raise ConfigError(f"Tag layout not found: {layout_path}")
        return parse_layout(_load_document(layout_path))
    return parse_layout(value)


def load_config(path: str | Path) -> VisionConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    raw = _load_document(p)

    cfg = VisionConfig()
    try:
        cfg.camera_name = str(raw.get("camera_name", cfg.camera_name))
        cfg.capture = str(raw.get("capture", cfg.capture)).lower()
        cfg.video_path = str(raw.get("video_path", cfg.video_path))
        cfg.static_image = str(raw.get("static_image", cfg.static_image))
        cfg.fps = int(raw.get("fps", cfg.fps))
        cfg.width = int(raw.get("width", cfg.width))
        cfg.height = int(raw.get("height", cfg.height))
        cfg.auto_exposure = int(raw.get("auto_exposure", cfg.auto_exposure))
        cfg.exposure = int(raw.get("exposure", cfg.exposure))
        cfg.gain = int(raw.get("gain", cfg.gain))
        cfg.fiducial_size_m = float(raw.get("fiducial_size_m", cfg.fiducial_size_m))
        cfg.fiducial_dict = str(raw.get("fiducial_dict", cfg.fiducial_dict))
        cfg.server_ip = str(raw.get("server_ip", cfg.server_ip))
        cfg.server_port = int(raw.get("server_port", cfg.server_port))
        cfg.stream_host = str(raw.get("stream_host", cfg.stream_host))
        cfg.stream_port = int(raw.get("stream_port", cfg.stream_port))
        cfg.has_calibration = bool(raw.get("has_calibration", cfg.has_calibration))
        cfg.reload_interval_s = float(raw.get("reload_interval_s", cfg.reload_interval_s))
        cfg.log_level = str(raw.get("log_level", cfg.log_level)).upper()
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value in {p}: {exc}") from exc

    if cfg.capture not in {"auto", "gstreamer", "v4l2", "static"}:
        raise ConfigError(f"Unknown capture backend: {cfg.capture}")
    if cfg.fiducial_size_m <= 0:
        raise ConfigError("fiducial_size_m must be positive")

    if "camera_matrix" in raw:
        cfg.camera_matrix = _parse_matrix(raw["camera_matrix"])
    if "distortion_coefficients" in raw:
        cfg.distortion_coefficients = _parse_vector(raw["distortion_coefficients"])
    if "tag_layout" in raw:
        cfg.tag_layout = _load_layout(raw["tag_layout"], p.parent)

    return cfg
