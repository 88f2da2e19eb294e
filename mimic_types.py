"""
Mimic V1 — Shared Result Types
===============================
Plain dataclasses passed between the decoder, the landmark pipeline,
the estimators and the engine. Everything here is pixel-space unless
stated otherwise.

Developer: Mimic Team
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Optional

import numpy as np


@dataclass
class Box:
    """Axis-aligned face region in original-image pixels."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Detection:
    """A scored box produced by the detection decoder."""
    box: Box
    score: float

    def to_dict(self) -> dict:
        return {"box": self.box.to_dict(), "score": float(self.score)}


@dataclass(frozen=True)
class Orientation:
    """Head orientation in degrees (yaw, pitch, roll)."""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExpressionWeights:
    """Five normalized expression weights, each in [0, 1]."""
    eye_blink_left: float = 0.0
    eye_blink_right: float = 0.0
    mouth_open: float = 0.0
    mouth_smile: float = 0.0
    brow_raise: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    def copy(self) -> "ExpressionWeights":
        return ExpressionWeights(**asdict(self))


# Field order matters: smoothing iterates the weights in this order.
EXPRESSION_KEYS = (
    "eye_blink_left",
    "eye_blink_right",
    "mouth_open",
    "mouth_smile",
    "brow_raise",
)


@dataclass
class FaceResult:
    """One detection together with its 68-point landmark set."""
    detection: Detection
    landmarks: np.ndarray = field(default_factory=lambda: np.empty((0, 2)))


@dataclass
class TrackingResult:
    """Output of one processed frame of the tracking scheduler."""
    box: Box
    landmarks: np.ndarray
    orientation: Orientation
    expressions: ExpressionWeights
    timestamp: float
    redetected: bool = False

    def to_dict(self) -> dict:
        return {
            "box": self.box.to_dict(),
            "landmarks": self.landmarks.tolist(),
            "orientation": self.orientation.to_dict(),
            "expressions": self.expressions.to_dict(),
            "timestamp": self.timestamp,
            "redetected": self.redetected,
        }


@dataclass
class EngineResult:
    """Aggregate record for a frame that went through the engine."""
    tracking: Optional[TrackingResult]
    timestamp: float
    fps: float
    timing_breakdown: dict
    camera_health: dict
    memory_mb: float
    dropped_frames: int = 0
