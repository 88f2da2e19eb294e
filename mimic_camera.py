"""
Mimic V1 — Image Source
=======================
The only module that talks to cv2.VideoCapture. Supplies BGR frames of
a stable size to the tracking engine, from a webcam index or a video
file.

Features:
  - 1-frame capture buffer so the tracker always sees a recent frame
  - Per-frame validation (shape, dtype, channels, size, brightness)
  - Monotonic timestamps and rolling FPS
  - End-of-file detection for video sources

Developer: Mimic Team
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Optional, Union

import cv2
import numpy as np


# ─── Module Logger ─────────────────────────────────────────────
_log = logging.getLogger("MimicCamera")


class MimicCamera:
    """Validated frame capture for the tracker.

    Args:
        camera_id: Webcam index, or a path to a video file.
        width: Requested capture width (webcams only).
        height: Requested capture height (webcams only).
        backend: OpenCV capture backend. CAP_ANY lets OpenCV choose.
    """

    # ── Validation constants ──────────────────────────────────
    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    EXPECTED_CHANNELS: int = 3
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap, dead sensor
    MAX_MEAN_BRIGHTNESS: float = 250.0  # saturated sensor
    FPS_WINDOW: int = 30

    def __init__(
        self,
        camera_id: Union[int, str] = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
        backend: int = cv2.CAP_ANY,
    ) -> None:
        self._source = camera_id
        self._is_file = isinstance(camera_id, str)
        self._cap: cv2.VideoCapture = cv2.VideoCapture(camera_id, backend)

        if not self._is_file:
            self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            if width:
                self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            if height:
                self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._resolution: tuple[int, int] = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

        self._frames_total = 0
        self._frames_dropped = 0
        self._last_valid_timestamp = 0.0
        self._exhausted = False
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

        _log.info(
            "MimicCamera opened — source=%s resolution=%s opened=%s",
            camera_id, self._resolution, self._cap.isOpened(),
        )

    # ── Public API ────────────────────────────────────────────

    @property
    def exhausted(self) -> bool:
        """True once a video file source has no more frames."""
        return self._exhausted

    def read_validated_frame(self) -> tuple[bool, Optional[np.ndarray], float]:
        """Read one frame and validate it.

        Returns:
            (success, frame_or_None, monotonic_timestamp); (False, None, 0.0)
            when the read or any validation check fails.
        """
        self._frames_total += 1
        timestamp = time.monotonic()

        ret, frame = self._cap.read()
        if not ret and self._is_file:
            self._exhausted = True

        if not self.validate_frame(ret, frame):
            self._frames_dropped += 1
            return False, None, 0.0

        self._last_valid_timestamp = timestamp
        self._frame_times.append(timestamp)
        return True, frame, timestamp

    def get_health_status(self) -> dict:
        """Snapshot of capture health."""
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )
        return {
            "connected": self._cap.isOpened(),
            "source": str(self._source),
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                self._frames_dropped / self._frames_total * 100.0
                if self._frames_total > 0
                else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
        }

    def is_opened(self) -> bool:
        return self._cap.isOpened()

    def release(self) -> None:
        """Release the capture device."""
        health = self.get_health_status()
        _log.info(
            "MimicCamera releasing — total=%d dropped=%d (%.1f%%) fps=%.1f",
            health["frames_total"],
            health["frames_dropped"],
            health["drop_rate_pct"],
            health["fps_actual"],
        )
        self._cap.release()

    def __enter__(self) -> "MimicCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Validation ────────────────────────────────────────────

    def validate_frame(self, ret: bool, frame: Optional[np.ndarray]) -> bool:
        """True if the frame is a usable BGR uint8 image."""
        if not ret or frame is None:
            _log.debug("Validation FAIL: no frame")
            return False

        if frame.ndim != 3 or frame.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s (expected HxWx3)", frame.shape)
            return False

        if frame.dtype != np.uint8:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", frame.dtype)
            return False

        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            _log.debug("Validation FAIL: resolution %dx%d below %dx%d",
                       w, h, self.MIN_WIDTH, self.MIN_HEIGHT)
            return False

        mean_brightness = float(frame.mean())
        if mean_brightness <= self.MIN_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-black frame (mean=%.2f)", mean_brightness)
            return False
        if mean_brightness >= self.MAX_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: all-white frame (mean=%.2f)", mean_brightness)
            return False

        return True

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed
