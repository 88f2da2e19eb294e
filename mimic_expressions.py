"""
Mimic V1 — Expression Estimator
===============================
Turns a 68-point landmark set into five expression weights in [0, 1]:
eye blink (left/right), mouth open, mouth smile and brow raise.

Pipeline per frame:
  1. Geometric ratios from landmark subsets, normalized by the
     inter-eye distance |p36 - p45| so they do not depend on face size.
  2. One auto-calibrating RangeTracker per ratio maps it into [0, 1].
     EAR is inverted: an open eye has a high EAR and a low blink weight.
  3. EMA smoothing (factor 0.3) against the previous frame's weights.

All calibration and smoothing state lives on an ExpressionSession owned
by the caller. Nothing is kept at module level.

Developer: Mimic Team
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import numpy as np

from mimic_types import EXPRESSION_KEYS, ExpressionWeights
from mimic_utils_core import (
    CONTRACTION_RATE,
    EMA_FACTOR,
    SEED_RANGES,
    SignalSmoother,
)
from mimic_utils.landmark_projection import NUM_LANDMARKS
from mimic_utils.range_tracker import RangeTracker

_log = logging.getLogger("MimicExpressions")

# ─── Landmark indices ─────────────────────────────────────────
LEFT_EYE = (42, 43, 44, 45, 46, 47)
RIGHT_EYE = (36, 37, 38, 39, 40, 41)
LEFT_BROW = (22, 23, 24, 25, 26)
RIGHT_BROW = (17, 18, 19, 20, 21)
LEFT_EYE_LINE = (42, 45)
RIGHT_EYE_LINE = (36, 39)
INNER_LIP_TOP, INNER_LIP_BOTTOM = 62, 66
MOUTH_CORNER_A, MOUTH_CORNER_B = 48, 54
INTER_EYE_A, INTER_EYE_B = 36, 45

MIN_INTER_EYE_PX = 1.0
MIN_EAR_HORIZONTAL = 0.001

# Raw signal name -> (weight it drives, inverted mapping)
_SIGNAL_TO_WEIGHT = {
    "left_ear": ("eye_blink_left", True),
    "right_ear": ("eye_blink_right", True),
    "mouth_gap": ("mouth_open", False),
    "mouth_width": ("mouth_smile", False),
    "brow_dist": ("brow_raise", False),
}


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def compute_ear(landmarks: np.ndarray, indices: Sequence[int]) -> float:
    """Eye aspect ratio from six eye-contour points.

    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)

    Returns 0.0 when the horizontal span is below 0.001.
    """
    p1, p2, p3, p4, p5, p6 = (landmarks[i] for i in indices)
    horizontal = _dist(p1, p4)
    if horizontal < MIN_EAR_HORIZONTAL:
        return 0.0
    return (_dist(p2, p6) + _dist(p3, p5)) / (2.0 * horizontal)


def compute_raw_signals(landmarks: np.ndarray) -> Optional[dict[str, float]]:
    """The five un-normalized geometric ratios, or None for a degenerate face."""
    pts = np.asarray(landmarks, dtype=np.float64)
    if pts.ndim != 2 or len(pts) < NUM_LANDMARKS:
        return None

    inter_eye = _dist(pts[INTER_EYE_A], pts[INTER_EYE_B])
    if inter_eye < MIN_INTER_EYE_PX:
        return None

    # Image y grows downward, so a raised brow gives a larger gap.
    left_brow_y = pts[list(LEFT_BROW), 1].mean()
    right_brow_y = pts[list(RIGHT_BROW), 1].mean()
    left_eye_y = pts[list(LEFT_EYE_LINE), 1].mean()
    right_eye_y = pts[list(RIGHT_EYE_LINE), 1].mean()
    brow_dist = (
        (left_eye_y - left_brow_y) / inter_eye
        + (right_eye_y - right_brow_y) / inter_eye
    ) / 2

    return {
        "left_ear": compute_ear(pts, LEFT_EYE),
        "right_ear": compute_ear(pts, RIGHT_EYE),
        "mouth_gap": _dist(pts[INNER_LIP_TOP], pts[INNER_LIP_BOTTOM]) / inter_eye,
        "mouth_width": _dist(pts[MOUTH_CORNER_A], pts[MOUTH_CORNER_B]) / inter_eye,
        "brow_dist": float(brow_dist),
    }


class ExpressionSession:
    """Calibration and smoothing state for one tracking session.

    Not thread-safe: a session is driven from a single extraction path.
    Call `reset()` only while no `extract()` is running.
    """

    def __init__(
        self,
        seed_ranges: Optional[Mapping[str, Sequence[float]]] = None,
        ema_factor: float = EMA_FACTOR,
        contraction_rate: float = CONTRACTION_RATE,
    ) -> None:
        seeds = dict(SEED_RANGES)
        seeds.update(seed_ranges or {})
        self.ranges: dict[str, RangeTracker] = {
            name: RangeTracker(seeds[name][0], seeds[name][1], contraction_rate)
            for name in _SIGNAL_TO_WEIGHT
        }
        self._smoothers: dict[str, SignalSmoother] = {
            key: SignalSmoother(ema_factor) for key in EXPRESSION_KEYS
        }
        self.frames_seen = 0
        self.frames_rejected = 0

    @property
    def has_output(self) -> bool:
        return all(s.initialized for s in self._smoothers.values())

    def current(self) -> ExpressionWeights:
        """Last smoothed weights, or all-zero weights before the first frame."""
        if not self.has_output:
            return ExpressionWeights()
        return ExpressionWeights(**{k: s.value for k, s in self._smoothers.items()})

    def extract(self, landmarks: np.ndarray) -> ExpressionWeights:
        """Update calibration with one landmark set and return smoothed weights.

        A degenerate face (inter-eye distance under 1px, or fewer than 68
        points) leaves all state untouched and returns the previous output.
        """
        signals = compute_raw_signals(landmarks)
        if signals is None:
            self.frames_rejected += 1
            _log.debug("Expression frame rejected (degenerate landmarks)")
            return self.current()

        raw: dict[str, float] = {}
        for name, value in signals.items():
            tracker = self.ranges[name]
            tracker.update(value)
            weight, invert = _SIGNAL_TO_WEIGHT[name]
            raw[weight] = tracker.map(value, invert=invert)

        for key in EXPRESSION_KEYS:
            self._smoothers[key].update(raw[key])
        self.frames_seen += 1
        return self.current()

    def reset(self) -> None:
        """Clear smoothing and force every range to re-narrow on next frame."""
        for smoother in self._smoothers.values():
            smoother.reset()
        for tracker in self.ranges.values():
            tracker.reset()
        self.frames_seen = 0
        self.frames_rejected = 0
        _log.info("Expression calibration reset")
