"""
Mimic V1 — Tiny Face Detector Output Decoder
============================================
Turns the raw anchor grid of the tiny face detector into scored boxes
in original-image pixels.

Grid layout: `numCells x numCells` cells, each holding `numAnchors`
predictions of five values `(tx, ty, tw, th, score_logit)`. The flat
offset of a prediction is `((row * numCells + col) * numAnchors + a) * 5`,
which is exactly a C-order reshape to `(numCells, numCells, numAnchors, 5)`.

The network was fed the frame padded on the bottom/right to a square of
side `max(W, H)`, so grid fractions are corrected back to the original
aspect with `corr = maxDim / origDim` before scaling to pixels.

Developer: Mimic Team
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from mimic_types import Box, Detection
from mimic_utils.geometry import sigmoid, non_max_suppression

_log = logging.getLogger("MimicDecoder")

# Prior (width, height) per anchor in grid-cell units.
DETECTOR_ANCHORS: tuple[tuple[float, float], ...] = (
    (1.603231, 2.094468),
    (6.041143, 7.080126),
    (2.882459, 3.518061),
    (4.266906, 5.178857),
    (9.041765, 10.66308),
)

DECODER_IOU_THRESHOLD = 0.4


def _grid_from_raw(
    raw: np.ndarray,
    num_anchors: int,
    num_cells: Optional[int],
) -> np.ndarray:
    """Reshape raw detector output into (cells, cells, anchors, 5)."""
    flat = np.asarray(raw, dtype=np.float64).reshape(-1)
    per_cell = num_anchors * 5

    if num_cells is None:
        # A 4-D tensor carries its grid size in the shape.
        shape = np.shape(raw)
        if len(shape) == 4 and shape[1] == shape[2]:
            num_cells = int(shape[1])
        else:
            cells_sq = flat.size // per_cell if per_cell else 0
            num_cells = int(round(np.sqrt(cells_sq)))

    expected = num_cells * num_cells * per_cell
    if num_cells <= 0 or flat.size != expected:
        raise ValueError(
            f"Detector output of {flat.size} values does not fit a "
            f"{num_cells}x{num_cells}x{num_anchors}x5 grid"
        )
    return flat.reshape(num_cells, num_cells, num_anchors, 5)


def decode_boxes(
    raw: np.ndarray,
    orig_width: float,
    orig_height: float,
    score_threshold: float,
    anchors: Sequence[tuple[float, float]] = DETECTOR_ANCHORS,
    num_cells: Optional[int] = None,
) -> list[Detection]:
    """Decode every anchor above threshold into a clamped pixel box.

    No suppression is applied here; see `decode_detections`.

    Args:
        raw: Detector output, flat or shaped `(1, n, n, anchors*5)`.
        orig_width: Width of the frame before letterboxing.
        orig_height: Height of the frame before letterboxing.
        score_threshold: Minimum sigmoid score to keep.
        anchors: Prior sizes in grid units, one per anchor slot.
        num_cells: Grid side. Read from the tensor shape when omitted.

    Returns:
        Detections in grid order (row, col, anchor).
    """
    priors = np.asarray(anchors, dtype=np.float64)
    grid = _grid_from_raw(raw, len(priors), num_cells)
    n = grid.shape[0]

    scores = sigmoid(grid[..., 4])
    rows, cols, slots = np.nonzero(scores >= score_threshold)
    if rows.size == 0:
        return []

    cand = grid[rows, cols, slots]
    max_dim = max(orig_width, orig_height)
    corr_x = max_dim / orig_width
    corr_y = max_dim / orig_height

    ct_x = ((cols + sigmoid(cand[:, 0])) / n) * corr_x
    ct_y = ((rows + sigmoid(cand[:, 1])) / n) * corr_y
    w = (np.exp(cand[:, 2]) * priors[slots, 0] / n) * corr_x
    h = (np.exp(cand[:, 3]) * priors[slots, 1] / n) * corr_y

    x = (ct_x - w / 2) * orig_width
    y = (ct_y - h / 2) * orig_height
    width = w * orig_width
    height = h * orig_height

    visible = (
        (width > 0) & (height > 0)
        & (x + width > 0) & (y + height > 0)
        & (x < orig_width) & (y < orig_height)
    )

    x_c = np.maximum(0.0, x)
    y_c = np.maximum(0.0, y)
    width = np.minimum(width, orig_width - x_c)
    height = np.minimum(height, orig_height - y_c)

    detections = [
        Detection(
            box=Box(float(x_c[i]), float(y_c[i]), float(width[i]), float(height[i])),
            score=float(scores[rows[i], cols[i], slots[i]]),
        )
        for i in np.flatnonzero(visible)
    ]
    _log.debug("Decoded %d/%d candidates above %.2f",
               len(detections), rows.size, score_threshold)
    return detections


def decode_detections(
    raw: np.ndarray,
    orig_width: float,
    orig_height: float,
    score_threshold: float,
    anchors: Sequence[tuple[float, float]] = DETECTOR_ANCHORS,
    num_cells: Optional[int] = None,
    iou_threshold: float = DECODER_IOU_THRESHOLD,
) -> list[Detection]:
    """Decode and suppress duplicates. Highest score first."""
    boxes = decode_boxes(raw, orig_width, orig_height, score_threshold,
                         anchors=anchors, num_cells=num_cells)
    return non_max_suppression(boxes, iou_threshold)
