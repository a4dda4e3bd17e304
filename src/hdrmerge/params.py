"""
Exposure parameter descriptor.

One RawParameters instance describes the geometry, calibration and timing
of a single decoded frame. It is created by the decoding backend and only
mutated by the ImageIO orchestrator (white level clamp, final size).

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import numpy as np


@dataclass(frozen=True, order=True)
class DateInterval:
    """Capture interval of an exposure: shutter opening to closing."""

    start: datetime
    end: datetime

    def difference(self, other: DateInterval) -> float:
        """Seconds between the end of this interval and the start of ``other``."""
        return (other.start - self.end).total_seconds()


@dataclass
class RawParameters:
    """
    Geometry, calibration and timing of one decoded raw frame.

    Coordinates used by color_at() and black_at() are relative to the
    active area, i.e. (0, 0) is the pixel at (top_margin, left_margin)
    of the raw buffer.
    """

    file_name: str

    # --- Geometry ---
    raw_width: int = 0
    raw_height: int = 0
    width: int = 0
    height: int = 0
    top_margin: int = 0
    left_margin: int = 0

    filters: tuple[tuple[int, int], tuple[int, int]] | None = None
    """2x2 CFA pattern of color indices into cdesc (None for non-mosaic data)."""

    cdesc: str = ""
    """Color description, e.g. 'RGBG'."""

    flip: int = 0

    # --- Calibration ---
    black: int = 0
    cblack: tuple[int, int, int, int] = (0, 0, 0, 0)
    """Per-channel black offset, added to black."""

    max: int = 0
    """White (saturation) level."""

    cam_mul: tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)

    # --- Identity ---
    maker: str = ""
    model: str = ""

    # --- Timing ---
    timestamp: datetime | None = None
    """Capture end time."""

    shutter: float = 0.0
    """Exposure duration in seconds."""

    extra: dict = field(default_factory=dict)

    def color_at(self, x: int, y: int) -> int:
        """Color index of the active-area pixel (x, y)."""
        if self.filters is None:
            return 0
        return self.filters[y & 1][x & 1]

    def black_at(self, x: int, y: int) -> int:
        """Black level of the active-area pixel (x, y)."""
        return self.black + self.cblack[self.color_at(x, y)]

    def black_map(self, height: int | None = None, width: int | None = None) -> np.ndarray:
        """Per-pixel black level over an active-area sized grid (float32)."""
        height = self.height if height is None else height
        width = self.width if width is None else width
        pattern = np.array(
            [[self.black_at(x, y) for x in range(2)] for y in range(2)],
            dtype=np.float32,
        )
        reps = ((height + 1) // 2, (width + 1) // 2)
        return np.tile(pattern, reps)[:height, :width]

    def is_same_format(self, other: RawParameters) -> bool:
        """True when both frames share geometry and sensor layout."""
        return (
            self.width == other.width
            and self.height == other.height
            and self.raw_width == other.raw_width
            and self.raw_height == other.raw_height
            and self.top_margin == other.top_margin
            and self.left_margin == other.left_margin
            and self.filters == other.filters
            and self.cdesc == other.cdesc
        )

    def can_align(self) -> bool:
        """Alignment preserves CFA phase only for 2x2 Bayer layouts."""
        if self.filters is None:
            return False
        colors = {c for row in self.filters for c in row}
        return len(colors) >= 3

    def adjust_white(self, image: np.ndarray) -> None:
        """
        Lower the white level to the brightest value actually present.

        Parameters
        ----------
        image : np.ndarray
            Black-subtracted active-area data of the least exposed frame.
        """
        if image.size == 0:
            return
        observed = int(np.max(image)) + self.black
        if self.black < observed < self.max:
            self.max = observed

    @property
    def creation_interval(self) -> DateInterval | None:
        """Capture interval, or None when no timestamp was decoded."""
        if self.timestamp is None:
            return None
        return DateInterval(self.timestamp - timedelta(seconds=self.shutter), self.timestamp)
