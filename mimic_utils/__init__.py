"""
Mimic V1 — mimic_utils package
===============================
Re-exports the shared utilities from mimic_utils_core.py so callers can
write `from mimic_utils import X`.

Also exposes submodules:
  - mimic_utils.geometry
  - mimic_utils.tiny_face_decoder
  - mimic_utils.landmark_projection
  - mimic_utils.range_tracker
"""

from __future__ import annotations

from mimic_utils_core import (
    # Config
    load_config,
    merge_config,
    CONFIG,
    DEFAULT_CONFIG,
    # Constants
    DETECT_INPUT_SIZE,
    SCORE_THRESHOLD,
    NMS_IOU_THRESHOLD,
    DETECTOR_MEAN_RGB,
    LANDMARK_INPUT_SIZE,
    LANDMARK_MEAN_RGB,
    DETECT_INTERVAL_MS,
    EMA_FACTOR,
    CONTRACTION_RATE,
    SEED_RANGES,
    ROTATION_DAMPING,
    ROTATION_LERP,
    # Logging
    setup_logger,
    # Smoothing
    SignalSmoother,
    HeadRotationFollower,
)

from .geometry import sigmoid, iou, non_max_suppression
from .tiny_face_decoder import DETECTOR_ANCHORS, decode_boxes, decode_detections
from .landmark_projection import letterbox_params, project_landmarks
from .range_tracker import RangeTracker

__all__ = [
    "load_config", "merge_config", "CONFIG", "DEFAULT_CONFIG",
    "DETECT_INPUT_SIZE", "SCORE_THRESHOLD", "NMS_IOU_THRESHOLD",
    "DETECTOR_MEAN_RGB", "LANDMARK_INPUT_SIZE", "LANDMARK_MEAN_RGB",
    "DETECT_INTERVAL_MS", "EMA_FACTOR", "CONTRACTION_RATE", "SEED_RANGES",
    "ROTATION_DAMPING", "ROTATION_LERP",
    "setup_logger",
    "SignalSmoother", "HeadRotationFollower",
    "sigmoid", "iou", "non_max_suppression",
    "DETECTOR_ANCHORS", "decode_boxes", "decode_detections",
    "letterbox_params", "project_landmarks",
    "RangeTracker",
]
