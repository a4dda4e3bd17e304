"""
Superpixel debayering for 2x2 color filter arrays.

Used for alignment (half resolution luminance) and for preview
rendering. Any 2x2 layout is supported (RGGB, BGGR, GRBG, GBRG); the
layout is given as a 2x2 table of color indices into a color
description string such as 'RGBG'.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

RGGB = ((0, 1), (3, 2))
"""RGGB layout as color indices into 'RGBG'."""

_CHANNELS = {"R": 0, "G": 1, "B": 2}


def debayer_superpixel(
    data: np.ndarray,
    filters: tuple[tuple[int, int], tuple[int, int]] = RGGB,
    cdesc: str = "RGBG",
) -> np.ndarray:
    """
    2x2 superpixel debayer for any 2x2 CFA layout.

    Each 2x2 block produces one RGB pixel; channels sampled twice in the
    block (typically green) are averaged.

    Parameters
    ----------
    data : np.ndarray
        2D mosaic image (H, W).
    filters : tuple of tuple of int
        Color index at (row % 2, col % 2).
    cdesc : str
        Color description indexed by the values of ``filters``.

    Returns
    -------
    np.ndarray
        RGB image with shape (H/2, W/2, 3), dtype float32.
    """
    if data.ndim != 2:
        raise ValueError(f"Expected 2D array, got shape {data.shape}")

    h2, w2 = data.shape[0] // 2, data.shape[1] // 2
    data_f = data.astype(np.float32)

    rgb = np.zeros((h2, w2, 3), dtype=np.float32)
    counts = np.zeros(3, dtype=np.float32)
    for dy in range(2):
        for dx in range(2):
            letter = cdesc[filters[dy][dx]]
            channel = _CHANNELS.get(letter, 1)
            rgb[:, :, channel] += data_f[dy:h2 * 2:2, dx:w2 * 2:2]
            counts[channel] += 1

    missing = counts == 0
    if missing.any():
        raise ValueError(f"CFA layout {filters} with '{cdesc}' lacks a primary color")
    rgb /= counts

    logger.debug("Superpixel debayer: %s -> %s", data.shape, rgb.shape)
    return rgb


def mosaic_luma(data: np.ndarray) -> np.ndarray:
    """
    Half resolution luminance proxy: mean of each 2x2 block.

    Independent of the CFA layout, so it can be computed before the
    layout is known and is phase-stable for even shifts.
    """
    h2, w2 = data.shape[0] // 2, data.shape[1] // 2
    blocks = data[:h2 * 2, :w2 * 2].astype(np.float32).reshape(h2, 2, w2, 2)
    return blocks.mean(axis=(1, 3))
