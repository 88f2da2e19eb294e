"""
Mimic V1 — Face Detection & Landmark Pipeline
=============================================
Owns every step between a BGR frame and a 68-point landmark set:
tile preparation for both networks, detector decoding, landmark
back-projection, and the geometric head-orientation heuristic.

Features:
  - Detector tile: bottom/right pad to square, bilinear resize,
    mean-subtract, divide by 256
  - Landmark tile: clamp box to frame, centre-pad crop to square,
    resize to 112, mean-subtract, divide by 255
  - Multi-face detection (detector decode + NMS at IoU 0.4)
  - Yaw/pitch/roll from eye corners and nose tip
  - Model collaborators injected (ONNX by default, fakes in tests)

Letterbox conventions (keep in sync with the decoders):
  ═══════════════════════════════════════════════════════════
  Detector:  origin stays at the top-left, padding goes bottom/right.
             tiny_face_decoder corrects grid fractions by maxDim/origDim.
  Landmarks: crop is centred in its square. landmark_projection removes
             (maxDim - side) / 2 of padding on the shorter axis.
  ═══════════════════════════════════════════════════════════

Developer: Mimic Team
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import cv2
import numpy as np

from mimic_types import Box, Detection, FaceResult, Orientation
from mimic_models import TileModel, load_model_pair, resolve_model_path
from mimic_utils_core import (
    CONFIG,
    DETECTOR_MEAN_RGB,
    LANDMARK_MEAN_RGB,
    NMS_IOU_THRESHOLD,
    SCORE_THRESHOLD,
)
from mimic_utils.tiny_face_decoder import DETECTOR_ANCHORS, decode_detections
from mimic_utils.landmark_projection import NUM_LANDMARKS, project_landmarks

_log = logging.getLogger("MimicFacePipeline")


# ═══════════════════════════════════════════════════════════════
# 68-Point Landmark Regions
# ═══════════════════════════════════════════════════════════════
#
# iBUG 300-W convention, 0-indexed. "Right" and "left" are the
# subject's own sides, so the right eye appears on the image left.

FACE_LANDMARKS: dict[str, list[int]] = {
    "jaw": list(range(0, 17)),
    "right_eyebrow": list(range(17, 22)),
    "left_eyebrow": list(range(22, 27)),
    "nose_bridge": list(range(27, 31)),
    "nose_tip": list(range(31, 36)),
    "right_eye": list(range(36, 42)),
    "left_eye": list(range(42, 48)),
    "outer_lips": list(range(48, 60)),
    "inner_lips": list(range(60, 68)),
}

# Orientation anchors
_EYE_CORNER_A = 36
_EYE_CORNER_B = 45
_NOSE_TIP = 30
_ORIENTATION_SCALE = 30.0

_DETECTOR_DIVISOR = 256.0
_LANDMARK_DIVISOR = 255.0

_EMPTY_LANDMARKS = np.empty((0, 2), dtype=np.float64)
_EMPTY_LANDMARKS.setflags(write=False)


# ═══════════════════════════════════════════════════════════════
# Orientation
# ═══════════════════════════════════════════════════════════════

def calculate_face_orientation(landmarks: Optional[np.ndarray]) -> Orientation:
    """Cheap head pose from three landmarks.

    yaw   = ((mid_eye_x - nose_x) / eye_dist) * 30
    pitch = ((nose_y - mid_eye_y) / eye_dist) * 30
    roll  = atan2(dy, dx) of the eye line, in degrees

    Returns a zero Orientation for missing, short, or degenerate input.
    """
    if landmarks is None or len(landmarks) < NUM_LANDMARKS:
        return Orientation()

    pts = np.asarray(landmarks, dtype=np.float64)
    left_eye = pts[_EYE_CORNER_A]
    right_eye = pts[_EYE_CORNER_B]
    nose = pts[_NOSE_TIP]

    dx = right_eye[0] - left_eye[0]
    dy = right_eye[1] - left_eye[1]
    eye_dist = math.hypot(dx, dy)
    if eye_dist == 0:
        return Orientation()

    mid_x = (left_eye[0] + right_eye[0]) / 2
    mid_y = (left_eye[1] + right_eye[1]) / 2

    return Orientation(
        yaw=float((mid_x - nose[0]) / eye_dist * _ORIENTATION_SCALE),
        pitch=float((nose[1] - mid_y) / eye_dist * _ORIENTATION_SCALE),
        roll=math.degrees(math.atan2(dy, dx)),
    )


# ═══════════════════════════════════════════════════════════════
# Tile Preparation
# ═══════════════════════════════════════════════════════════════

def _as_bgr(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    return frame


def prepare_detector_tile(
    frame: np.ndarray,
    input_size: int,
    mean_rgb: Sequence[float] = DETECTOR_MEAN_RGB,
) -> np.ndarray:
    """Build the (1, S, S, 3) float32 detector input from a BGR frame."""
    frame = _as_bgr(frame)
    h, w = frame.shape[:2]
    max_dim = max(h, w)
    padded = cv2.copyMakeBorder(
        frame, 0, max_dim - h, 0, max_dim - w,
        cv2.BORDER_CONSTANT, value=(0, 0, 0),
    )
    resized = cv2.resize(padded, (input_size, input_size),
                         interpolation=cv2.INTER_LINEAR)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB).astype(np.float32)
    tile = (rgb - np.asarray(mean_rgb, dtype=np.float32)) / _DETECTOR_DIVISOR
    return tile[np.newaxis]


def clamp_crop(box: Box, frame_width: int, frame_height: int) -> tuple[int, int, int, int]:
    """Integer crop (x, y, w, h) of a box inside the frame. w/h may be <= 0."""
    x = max(0, math.floor(box.x))
    y = max(0, math.floor(box.y))
    w = min(math.floor(box.width), frame_width - x)
    h = min(math.floor(box.height), frame_height - y)
    return x, y, w, h


def prepare_landmark_tile(
    frame: np.ndarray,
    box: Box,
    input_size: int,
    mean_rgb: Sequence[float] = LANDMARK_MEAN_RGB,
) -> Optional[tuple[np.ndarray, int, int]]:
    """Crop, centre-pad and normalize the face region.

    Returns:
        (tile, crop_w, crop_h), or None when the clamped crop is empty.
    """
    frame = _as_bgr(frame)
    img_h, img_w = frame.shape[:2]
    x, y, w, h = clamp_crop(box, img_w, img_h)
    if w <= 0 or h <= 0:
        return None

    crop = frame[y:y + h, x:x + w]
    max_dim = max(w, h)
    pad_x = (max_dim - w) // 2
    pad_y = (max_dim - h) // 2
    square = cv2.copyMakeBorder(
        crop, pad_y, max_dim - h - pad_y, pad_x, max_dim - w - pad_x,
        cv2.BORDER_CONSTANT, value=(0, 0, 0),
    )
    resized = cv2.resize(square, (input_size, input_size),
                         interpolation=cv2.INTER_LINEAR)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB).astype(np.float32)
    tile = (rgb - np.asarray(mean_rgb, dtype=np.float32)) / _LANDMARK_DIVISOR
    return tile[np.newaxis], w, h


# ═══════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════

class FaceTrackingPipeline:
    """Detector + landmark regressor around two injected tile models.

    Models may be passed in directly (already loaded) or created later
    from paths with `load_models()`. Running any detection before both
    are present raises RuntimeError("Models not loaded").
    """

    def __init__(
        self,
        detector: Optional[TileModel] = None,
        landmark_model: Optional[TileModel] = None,
        score_threshold: float = SCORE_THRESHOLD,
        iou_threshold: float = NMS_IOU_THRESHOLD,
        detector_mean: Sequence[float] = DETECTOR_MEAN_RGB,
        landmark_mean: Sequence[float] = LANDMARK_MEAN_RGB,
        detector_path: Optional[str] = None,
        landmark_path: Optional[str] = None,
        detector_input_size: int = 160,
        landmark_input_size: int = 112,
    ) -> None:
        self.detector = detector
        self.landmark_model = landmark_model
        self.score_threshold = score_threshold
        self.iou_threshold = iou_threshold
        self.detector_mean = tuple(detector_mean)
        self.landmark_mean = tuple(landmark_mean)
        self.detector_path = detector_path
        self.landmark_path = landmark_path
        self._detector_input_size = detector_input_size
        self._landmark_input_size = landmark_input_size

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "FaceTrackingPipeline":
        """Unloaded pipeline configured from a merged config dict."""
        cfg = config or CONFIG
        det = cfg["detector"]
        lmk = cfg["landmarks"]
        return cls(
            score_threshold=det["score_threshold"],
            iou_threshold=det["iou_threshold"],
            detector_mean=det["mean_rgb"],
            landmark_mean=lmk["mean_rgb"],
            detector_path=resolve_model_path(det["model_path"]),
            landmark_path=resolve_model_path(lmk["model_path"]),
            detector_input_size=det["input_size"],
            landmark_input_size=lmk["input_size"],
        )

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def is_loaded(self) -> bool:
        return self.detector is not None and self.landmark_model is not None

    def load_models(self) -> bool:
        """Create both ONNX sessions. Returns False (and logs) on failure."""
        if self.detector_path is None or self.landmark_path is None:
            _log.error("Failed to load models: no model paths configured")
            return False
        try:
            self.detector, self.landmark_model = load_model_pair(
                self.detector_path,
                self.landmark_path,
                self._detector_input_size,
                self._landmark_input_size,
            )
        except Exception as e:
            _log.error("Failed to load models: %s", e)
            self.detector = None
            self.landmark_model = None
            return False
        _log.info("FaceTrackingPipeline models loaded")
        return True

    def _require_loaded(self) -> None:
        if not self.is_loaded:
            raise RuntimeError("Models not loaded")

    def release(self) -> None:
        """Drop model sessions."""
        self.detector = None
        self.landmark_model = None
        _log.info("FaceTrackingPipeline released")

    def __enter__(self) -> "FaceTrackingPipeline":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ── Public API ────────────────────────────────────────────

    def detect_faces(self, frame: np.ndarray) -> list[Detection]:
        """Detect faces in a BGR frame, highest score first."""
        self._require_loaded()
        h, w = frame.shape[:2]
        tile = prepare_detector_tile(frame, self.detector.input_size,
                                     self.detector_mean)
        raw = self.detector.run(tile)
        return decode_detections(
            raw, w, h, self.score_threshold,
            anchors=DETECTOR_ANCHORS,
            iou_threshold=self.iou_threshold,
        )

    def detect_landmarks(self, frame: np.ndarray, box: Box) -> np.ndarray:
        """68 landmarks for one box, or an empty (0, 2) array if the
        box does not overlap the frame."""
        self._require_loaded()
        prepared = prepare_landmark_tile(
            frame, box, self.landmark_model.input_size, self.landmark_mean,
        )
        if prepared is None:
            _log.debug("Landmark crop empty for box %s", box)
            return _EMPTY_LANDMARKS
        tile, crop_w, crop_h = prepared
        raw = self.landmark_model.run(tile)
        return project_landmarks(raw, box, crop_w, crop_h,
                                 self.landmark_model.input_size)

    def detect_faces_with_landmarks(self, frame: np.ndarray) -> list[FaceResult]:
        """Run the detector once, then landmarks for every detection."""
        faces = self.detect_faces(frame)
        return [
            FaceResult(detection=face,
                       landmarks=self.detect_landmarks(frame, face.box))
            for face in faces
        ]

    calculate_face_orientation = staticmethod(calculate_face_orientation)
