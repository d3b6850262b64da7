"""Fiducial-based camera pose coprocessor."""

from .config import VisionConfig, load_config
from .lifecycle import Lifecycle
from .supervisor import FrameSupervisor

__all__ = ["FrameSupervisor", "Lifecycle", "VisionConfig", "load_config"]
