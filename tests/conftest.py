"""
Mimic V1 — Shared Test Fixtures
================================
Synthetic 68-point faces and fake tile models so no test needs a real
camera or model weights.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from mimic_utils.tiny_face_decoder import DETECTOR_ANCHORS


def make_face_landmarks(
    offset: tuple[float, float] = (0.0, 0.0),
    scale: float = 1.0,
    eye_open: float = 5.0,
    mouth_gap: float = 10.0,
    mouth_width: float = 50.0,
    brow_y: float = 80.0,
) -> np.ndarray:
    """Frontal synthetic face.

    Eye corners 36 and 45 sit 100px apart at y=100 (before scaling), the
    nose tip is centred below them, and each geometric ratio used by the
    expression estimator can be dialled directly.
    """
    pts = np.zeros((68, 2), dtype=np.float64)

    # Jaw 0-16
    for i in range(17):
        pts[i] = (80 + i * 7.5, 150 + 40 * np.sin(np.pi * i / 16))
    # Brows 17-21 (right), 22-26 (left)
    for k, i in enumerate(range(17, 22)):
        pts[i] = (100 + k * 7.5, brow_y)
    for k, i in enumerate(range(22, 27)):
        pts[i] = (170 + k * 7.5, brow_y)
    # Nose bridge 27-30, nose tip 31-35
    for k, i in enumerate(range(27, 31)):
        pts[i] = (150, 105 + k * 11.67)
    pts[30] = (150, 140)
    for k, i in enumerate(range(31, 36)):
        pts[i] = (140 + k * 5, 145)
    # Right eye 36-41: outer, two upper, inner, two lower
    pts[36] = (100, 100)
    pts[37] = (110, 100 - eye_open)
    pts[38] = (120, 100 - eye_open)
    pts[39] = (130, 100)
    pts[40] = (120, 100 + eye_open)
    pts[41] = (110, 100 + eye_open)
    # Left eye 42-47
    pts[42] = (170, 100)
    pts[43] = (180, 100 - eye_open)
    pts[44] = (190, 100 - eye_open)
    pts[45] = (200, 100)
    pts[46] = (190, 100 + eye_open)
    pts[47] = (180, 100 + eye_open)
    # Outer lips 48-59
    half_w = mouth_width / 2
    for k, i in enumerate(range(48, 60)):
        angle = 2 * np.pi * k / 12
        pts[i] = (150 - half_w * np.cos(angle), 180 + 12 * np.sin(angle))
    # Inner lips 60-67
    for k, i in enumerate(range(60, 68)):
        angle = 2 * np.pi * k / 8
        pts[i] = (150 - 15 * np.cos(angle), 180 + 4 * np.sin(angle))
    pts[62] = (150, 180 - mouth_gap / 2)
    pts[66] = (150, 180 + mouth_gap / 2)

    pts = pts * scale + np.asarray(offset)
    return pts


def make_detector_grid(
    num_cells: int = 10,
    hot: tuple[int, int, int] | None = (3, 4, 0),
    hot_values: tuple[float, float, float, float, float] = (0.0, 0.0, 0.0, 0.0, 20.0),
) -> np.ndarray:
    """(1, n, n, anchors*5) raw grid with every score at sigmoid(-20)
    except one hot (row, col, anchor) prediction."""
    num_anchors = len(DETECTOR_ANCHORS)
    grid = np.zeros((num_cells, num_cells, num_anchors, 5), dtype=np.float32)
    grid[..., 4] = -20.0
    if hot is not None:
        grid[hot] = hot_values
    return grid.reshape(1, num_cells, num_cells, num_anchors * 5)


class FakeDetector:
    """Tile model stand-in returning a fixed raw grid."""

    def __init__(self, output: np.ndarray, input_size: int = 160):
        self.output = output
        self.input_size = input_size
        self.tiles: list[np.ndarray] = []

    def run(self, tile: np.ndarray) -> np.ndarray:
        self.tiles.append(tile)
        return self.output


class FakeLandmarkModel:
    """Tile model stand-in returning fixed 136 raw values."""

    def __init__(self, output: np.ndarray | None = None, input_size: int = 112):
        self.output = np.full(136, 0.5) if output is None else output
        self.input_size = input_size
        self.tiles: list[np.ndarray] = []

    def run(self, tile: np.ndarray) -> np.ndarray:
        self.tiles.append(tile)
        return self.output


@pytest.fixture
def face_landmarks() -> np.ndarray:
    return make_face_landmarks()


@pytest.fixture
def gray_frame() -> np.ndarray:
    return np.full((240, 320, 3), 128, dtype=np.uint8)
