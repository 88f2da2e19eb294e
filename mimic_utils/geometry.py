"""
Mimic V1 — Box Geometry
=======================
Stateless helpers shared by the detection decoder and the tracker:
logistic activation, intersection-over-union and greedy
non-maximum suppression.

Developer: Mimic Team
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from mimic_types import Box, Detection


def sigmoid(x):
    """Logistic activation. Accepts scalars or NumPy arrays."""
    return 1.0 / (1.0 + np.exp(-x))


def iou(a: Box, b: Box) -> float:
    """Intersection over union of two boxes.

    Returns 0.0 for disjoint or edge-touching boxes and whenever either
    box has zero area.
    """
    area_a = a.area
    area_b = b.area
    if area_a <= 0.0 or area_b <= 0.0:
        return 0.0

    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)

    inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    if inter <= 0.0:
        return 0.0
    return float(inter / (area_a + area_b - inter))


def non_max_suppression(
    detections: Sequence[Detection],
    iou_threshold: float,
) -> list[Detection]:
    """Greedy NMS over scored boxes.

    Candidates are visited in descending score order (stable, so equal
    scores keep their input order). Each kept box removes every later
    candidate whose IoU with it exceeds `iou_threshold`. The input
    sequence is not modified.
    """
    ordered = sorted(detections, key=lambda d: d.score, reverse=True)
    kept: list[Detection] = []
    for candidate in ordered:
        if all(iou(candidate.box, k.box) <= iou_threshold for k in kept):
            kept.append(candidate)
    return kept
