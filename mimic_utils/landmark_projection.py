"""
Mimic V1 — Landmark Back-Projection
===================================
Maps the 68-point landmark network output (normalized to its square
input tile) back into original-image pixels.

The tile is built from the face crop by scaling the longer side to the
input size and centre-padding the shorter side. `project_landmarks`
undoes exactly that: remove the padding, undo the scale, then add the
crop origin.

Developer: Mimic Team
"""

from __future__ import annotations

import numpy as np

from mimic_types import Box

NUM_LANDMARKS = 68
LANDMARK_TILE_SIZE = 112


def letterbox_params(
    crop_width: float,
    crop_height: float,
    input_size: int = LANDMARK_TILE_SIZE,
) -> tuple[float, float, float]:
    """Return (scale, pad_x, pad_y) of the centre-pad letterbox.

    Padding is expressed in crop pixels, half of the side difference on
    the shorter axis and zero on the longer one.
    """
    scale = input_size / max(crop_width, crop_height)
    pad_x = abs(crop_width - crop_height) / 2 if crop_width < crop_height else 0.0
    pad_y = abs(crop_width - crop_height) / 2 if crop_height < crop_width else 0.0
    return scale, pad_x, pad_y


def project_landmarks(
    raw: np.ndarray,
    box: Box,
    crop_width: float,
    crop_height: float,
    input_size: int = LANDMARK_TILE_SIZE,
) -> np.ndarray:
    """Convert raw landmark output into a read-only (68, 2) pixel array.

    Args:
        raw: 136 floats, interleaved x0, y0, x1, y1, ... in tile units.
        box: Source box; its top-left is the crop origin.
        crop_width: Width of the crop fed to the tile builder.
        crop_height: Height of the crop fed to the tile builder.
        input_size: Side of the square network input.

    Raises:
        ValueError: If raw does not hold exactly 136 values.
    """
    points = np.asarray(raw, dtype=np.float64).reshape(-1)
    if points.size != NUM_LANDMARKS * 2:
        raise ValueError(
            f"Expected {NUM_LANDMARKS * 2} landmark values, got {points.size}"
        )
    points = points.reshape(NUM_LANDMARKS, 2)

    scale, pad_x, pad_y = letterbox_params(crop_width, crop_height, input_size)
    inv_scale = 1.0 / scale

    out = np.empty_like(points)
    out[:, 0] = (points[:, 0] * input_size - pad_x * scale) * inv_scale + box.x
    out[:, 1] = (points[:, 1] * input_size - pad_y * scale) * inv_scale + box.y
    out.setflags(write=False)
    return out
