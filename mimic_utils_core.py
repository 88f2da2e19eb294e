"""
Mimic V1 — Shared Utility Module
=================================
Centralized configuration and small stateful helpers used by every
Mimic module.

Contains:
  A) Configuration loading (config.yaml deep-merged over DEFAULT_CONFIG)
  B) Logger setup for console output
  C) SignalSmoother: exponential moving average for per-frame signals
  D) HeadRotationFollower: damped rotation targets for avatar rigs

The numeric constants below are behavioural parameters of the tracker.
Changing any of them changes what users see on screen, so they live in
config.yaml and are read once at import time.

Developer: Mimic Team
"""

from __future__ import annotations

import copy
import logging
import math
import os
from typing import Optional

import yaml

from mimic_types import Orientation


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')

DEFAULT_CONFIG: dict = {
    "detector": {
        "model_path": "models/tiny_face_detector.onnx",
        "input_size": 160,
        "score_threshold": 0.5,
        "iou_threshold": 0.4,
        "mean_rgb": [117.001, 114.697, 97.404],
    },
    "landmarks": {
        "model_path": "models/face_landmark_68.onnx",
        "input_size": 112,
        "mean_rgb": [122.782, 117.001, 104.298],
    },
    "scheduler": {
        "redetect_interval_ms": 500,
    },
    "expressions": {
        "ema_factor": 0.3,
        "contraction_rate": 0.001,
        "seed_ranges": {
            "left_ear": [0.05, 0.35],
            "right_ear": [0.05, 0.35],
            "mouth_gap": [0.0, 0.5],
            "mouth_width": [0.8, 1.2],
            "brow_dist": [0.2, 0.6],
        },
    },
    "avatar": {
        "rotation_damping": 0.7,
        "rotation_lerp": 0.15,
    },
    "camera": {
        "camera_id": 0,
        "width": 320,
        "height": 240,
    },
    "logging": {
        "log_dir": "logs",
        "level": "INFO",
        "log_frames": True,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Return a copy of base with override merged in, section by section."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml, falling back to defaults.

    Missing keys (or a missing file) are filled from DEFAULT_CONFIG.
    A file that exists but is not valid YAML raises yaml.YAMLError.
    """
    target = path or _config_path
    if not os.path.exists(target):
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(target, 'r', encoding='utf-8') as f:
        loaded = yaml.safe_load(f) or {}
    return _deep_merge(DEFAULT_CONFIG, loaded)


def merge_config(config: dict, overrides: Optional[dict]) -> dict:
    """Merge caller overrides over a loaded config (public wrapper)."""
    return _deep_merge(config, overrides or {})


CONFIG = load_config()


# ===================================================================
# Constants (loaded from config.yaml, overridable at runtime)
# ===================================================================

DETECT_INPUT_SIZE     = CONFIG['detector']['input_size']
SCORE_THRESHOLD       = CONFIG['detector']['score_threshold']
NMS_IOU_THRESHOLD     = CONFIG['detector']['iou_threshold']
DETECTOR_MEAN_RGB     = tuple(CONFIG['detector']['mean_rgb'])

LANDMARK_INPUT_SIZE   = CONFIG['landmarks']['input_size']
LANDMARK_MEAN_RGB     = tuple(CONFIG['landmarks']['mean_rgb'])

DETECT_INTERVAL_MS    = CONFIG['scheduler']['redetect_interval_ms']

EMA_FACTOR            = CONFIG['expressions']['ema_factor']
CONTRACTION_RATE      = CONFIG['expressions']['contraction_rate']
SEED_RANGES           = {
    name: tuple(bounds)
    for name, bounds in CONFIG['expressions']['seed_ranges'].items()
}

ROTATION_DAMPING      = CONFIG['avatar']['rotation_damping']
ROTATION_LERP         = CONFIG['avatar']['rotation_lerp']


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for Mimic modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-16s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


# ===================================================================
# Signal Smoother (Temporal averaging for per-frame weights)
# ===================================================================

class SignalSmoother:
    """Exponential moving average for temporal signal smoothing.

    The first observation is taken as-is; every later one moves the
    smoothed value by `alpha` of the remaining gap:

        smoothed += (new - smoothed) * alpha
    """

    def __init__(self, alpha: float = EMA_FACTOR):
        """Initialize smoother.

        Args:
            alpha: Weight of new value. Higher = less smoothing.
        """
        self.alpha = alpha
        self._value: Optional[float] = None

    def update(self, new_value: float) -> float:
        """Update with new observation, return smoothed value."""
        if self._value is None:
            self._value = float(new_value)
        else:
            self._value += (float(new_value) - self._value) * self.alpha
        return self._value

    def reset(self) -> None:
        """Reset to uninitialized state."""
        self._value = None

    @property
    def initialized(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> float:
        """Current smoothed value."""
        return self._value if self._value is not None else 0.0


# ===================================================================
# Head Rotation Follower (avatar-side damping)
# ===================================================================

class HeadRotationFollower:
    """Turn per-frame orientation into a damped rotation for a head rig.

    Targets are `radians(angle * damping)` per axis; the applied rotation
    chases the target by `lerp` of the remaining gap on every render
    frame, so it keeps easing even while inference reuses an old result.
    """

    def __init__(
        self,
        damping: float = ROTATION_DAMPING,
        lerp: float = ROTATION_LERP,
    ) -> None:
        self.damping = damping
        self.lerp = lerp
        self.rotation = [0.0, 0.0, 0.0]  # x (pitch), y (yaw), z (roll) radians

    def step(self, orientation: Orientation) -> tuple[float, float, float]:
        """Advance one render frame toward the given orientation."""
        targets = (
            math.radians(orientation.pitch * self.damping),
            math.radians(orientation.yaw * self.damping),
            math.radians(orientation.roll * self.damping),
        )
        for axis, target in enumerate(targets):
            self.rotation[axis] += (target - self.rotation[axis]) * self.lerp
        return tuple(self.rotation)

    def reset(self) -> None:
        self.rotation = [0.0, 0.0, 0.0]
