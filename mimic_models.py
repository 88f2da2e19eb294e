"""
Mimic V1 — ONNX Model Wrappers
==============================
Thin forward-pass wrappers for the two networks the tracker consumes:

  - TinyFaceDetectorModel: normalized (1, S, S, 3) tile ->
        raw grid (1, numCells, numCells, numAnchors * 5)
  - FaceLandmark68Model: normalized (1, 112, 112, 3) tile ->
        136 raw floats (x0, y0, x1, y1, ...)

Everything before and after the forward pass (tile building, decoding,
back-projection) lives in mimic_face_pipeline / mimic_utils, so these
classes only own the inference session.

Both wrappers accept NHWC tiles. If the exported graph expects NCHW the
tile is transposed on the way in.

Developer: Mimic Team
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol, runtime_checkable

import numpy as np
import onnxruntime as ort

_log = logging.getLogger("MimicModels")

# Priority: accelerator providers first, CPU always last.
_PREFERRED_PROVIDERS = [
    "CUDAExecutionProvider",
    "CoreMLExecutionProvider",
    "CPUExecutionProvider",
]


@runtime_checkable
class TileModel(Protocol):
    """Anything that maps a normalized square tile to a raw output array."""

    input_size: int

    def run(self, tile: np.ndarray) -> np.ndarray:
        ...


def _create_session(model_path: str) -> ort.InferenceSession:
    available = set(ort.get_available_providers())
    providers = [p for p in _PREFERRED_PROVIDERS if p in available] or [
        "CPUExecutionProvider"
    ]
    try:
        return ort.InferenceSession(model_path, providers=providers)
    except Exception as e:
        _log.warning("Session init with %s failed: %s. Falling back to CPU.",
                     providers, e)
        return ort.InferenceSession(model_path, providers=["CPUExecutionProvider"])


class _OnnxTileModel:
    """Shared session handling for the square-tile networks."""

    kind = "model"

    def __init__(self, model_path: str, default_input_size: int):
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"{self.kind} model missing: {model_path}")

        self.model_path = model_path
        self.session = _create_session(model_path)

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        shape = list(model_input.shape)

        # NCHW graphs put the channel axis second.
        self.channels_first = len(shape) == 4 and shape[1] == 3
        spatial = shape[2] if self.channels_first else (shape[1] if len(shape) == 4 else None)
        self.input_size = spatial if isinstance(spatial, int) else default_input_size

        _log.info("%s loaded: %s (input %dx%d, %s, providers=%s)",
                  self.kind, os.path.basename(model_path),
                  self.input_size, self.input_size,
                  "NCHW" if self.channels_first else "NHWC",
                  self.session.get_providers())

    def run(self, tile: np.ndarray) -> np.ndarray:
        """Forward one prepared tile; returns the first graph output."""
        feed = np.ascontiguousarray(tile, dtype=np.float32)
        if self.channels_first:
            feed = np.ascontiguousarray(feed.transpose(0, 3, 1, 2))
        outputs = self.session.run(None, {self.input_name: feed})
        return np.asarray(outputs[0])


class TinyFaceDetectorModel(_OnnxTileModel):
    """Anchor-grid face detector."""

    kind = "Tiny face detector"

    def __init__(self, model_path: str = "models/tiny_face_detector.onnx",
                 input_size: int = 160):
        super().__init__(model_path, input_size)

    def run(self, tile: np.ndarray) -> np.ndarray:
        out = super().run(tile)
        # NCHW exports emit (1, anchors*5, n, n); the decoder wants cells last.
        if self.channels_first and out.ndim == 4 and out.shape[2] == out.shape[3]:
            out = out.transpose(0, 2, 3, 1)
        return out


class FaceLandmark68Model(_OnnxTileModel):
    """68-point landmark regressor."""

    kind = "68-point landmark"

    def __init__(self, model_path: str = "models/face_landmark_68.onnx",
                 input_size: int = 112):
        super().__init__(model_path, input_size)

    def run(self, tile: np.ndarray) -> np.ndarray:
        return super().run(tile).reshape(-1)


def load_model_pair(
    detector_path: str,
    landmark_path: str,
    detector_input_size: int = 160,
    landmark_input_size: int = 112,
) -> tuple[TinyFaceDetectorModel, FaceLandmark68Model]:
    """Construct both models. Raises FileNotFoundError if either is missing."""
    detector = TinyFaceDetectorModel(detector_path, detector_input_size)
    landmarks = FaceLandmark68Model(landmark_path, landmark_input_size)
    return detector, landmarks


def resolve_model_path(path: str, root: Optional[str] = None) -> str:
    """Resolve a config-relative model path against the project root."""
    if os.path.isabs(path):
        return path
    root = root or os.path.dirname(os.path.abspath(__file__))
    return os.path.join(root, path)
