"""
Mimic V1 — Auto-Calibrating Range Tracker
=========================================
Keeps a per-signal [min, max] window that normalizes a raw geometric
ratio into [0, 1].

Lifecycle:
  1. Seeded with a generous default range, no data seen.
  2. First observation narrows the window to +/-10% of the current
     span around the value.
  3. Later observations widen the window instantly to cover new
     extremes, then pull both bounds toward the value by the
     contraction rate, so the window slowly follows the user.

Developer: Mimic Team
"""

from __future__ import annotations

from mimic_utils_core import CONTRACTION_RATE

FIRST_OBSERVATION_SPAN = 0.1
MIN_MAPPABLE_SPAN = 0.001


class RangeTracker:
    """Adaptive min/max window for one expression signal."""

    def __init__(
        self,
        seed_min: float,
        seed_max: float,
        contraction_rate: float = CONTRACTION_RATE,
    ) -> None:
        self.min = float(seed_min)
        self.max = float(seed_max)
        self.contraction_rate = contraction_rate
        self.has_data = False

    @property
    def span(self) -> float:
        return self.max - self.min

    def update(self, value: float) -> None:
        """Fold one raw observation into the window."""
        value = float(value)
        if not self.has_data:
            half = self.span * FIRST_OBSERVATION_SPAN
            self.min = value - half
            self.max = value + half
            self.has_data = True
            return

        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value
        self.min += (value - self.min) * self.contraction_rate
        self.max += (value - self.max) * self.contraction_rate

    def map(self, value: float, invert: bool = False) -> float:
        """Normalize value into [0, 1]; 0.0 when the window is collapsed."""
        span = self.span
        if span < MIN_MAPPABLE_SPAN:
            return 0.0
        t = (float(value) - self.min) / span
        if invert:
            t = 1.0 - t
        return max(0.0, min(1.0, t))

    def reset(self) -> None:
        """Forget that data was seen. Bounds are kept."""
        self.has_data = False

    def __repr__(self) -> str:
        return (f"RangeTracker(min={self.min:.4f}, max={self.max:.4f}, "
                f"has_data={self.has_data})")
