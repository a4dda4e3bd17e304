"""
Utility functions for hdrmerge.

Version information, stage timing and small formatting helpers.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import platform
import time
from contextlib import contextmanager
from typing import Iterator

import numpy as np

__version__ = "0.6.0"
__version_info__ = {
    "major": 0,
    "minor": 6,
    "patch": 0,
    "status": "stable",
    "date": "2026-10-19",
}

logger = logging.getLogger(__name__)


def get_version_banner() -> str:
    """Return a formatted version banner for logging."""
    return f"hdrmerge v{__version__} | HDR exposure merging for raw files"


def get_version() -> str:
    """Return the library version string."""
    return __version__


def get_platform_info() -> str:
    """Return platform information string."""
    return f"{platform.system()} {platform.release()} / Python {platform.python_version()} ({platform.machine()})"


@contextmanager
def timer(name: str) -> Iterator[None]:
    """
    Log the wall-clock duration of a block at DEBUG level.

    Parameters
    ----------
    name : str
        Label for the timed block (e.g., "Load files").
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug("%s: %s", name, format_duration(time.perf_counter() - start))


def to_uint8(data: np.ndarray) -> np.ndarray:
    """Round [0, 1] floats to 8-bit, clipping out-of-range values."""
    return np.rint(np.clip(data, 0.0, 1.0) * 255.0).astype(np.uint8)


def format_duration(seconds: float) -> str:
    """Short duration string: '0.4s', '2m 30s' or '1h 5m 0s'."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(round(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"
