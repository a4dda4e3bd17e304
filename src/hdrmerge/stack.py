"""
Exposure stack: ordering, alignment, response fitting, mask and compose.

The stack keeps exposures sorted from most to least exposed. Every stage
runs to completion before the next one begins; the orchestrator drives
them in a fixed order:

    set_flip -> calculate_saturation_level -> [align -> [crop]]
    -> compute_response_functions -> generate_mask -> compose

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.ndimage import gaussian_filter

from .align import apply_integer_shift, estimate_mosaic_shift
from .params import RawParameters

logger = logging.getLogger(__name__)

SATURATION_FRACTION = 0.99
"""Fraction of the white level above which a pixel counts as saturated."""

MIN_RESPONSE_SAMPLES = 16
"""Minimum pixel pairs needed to fit a response gain."""


class Image:
    """
    One decoded exposure: black-subtracted active-area mosaic.

    Parameters
    ----------
    raw : np.ndarray
        Raw sensor buffer, either (raw_height, raw_width) including the
        margins or already cropped to the active area.
    params : RawParameters
        Descriptor of the frame.
    key : int, optional
        Stable identifier of the descriptor, assigned by the orchestrator.
    """

    def __init__(self, raw: np.ndarray | None, params: RawParameters, key: int | None = None):
        self.key = key
        self.file_name = params.file_name
        self.dy = 0
        self.dx = 0
        self.response = 1.0
        self.sat_threshold = math.inf

        if raw is None or raw.ndim != 2 or raw.size == 0:
            self.data = np.zeros((0, 0), dtype=np.float32)
            self.brightness = 0.0
            return

        if raw.shape == (params.raw_height, params.raw_width) and raw.shape != (params.height, params.width):
            raw = raw[
                params.top_margin:params.top_margin + params.height,
                params.left_margin:params.left_margin + params.width,
            ]
        black = params.black_map(raw.shape[0], raw.shape[1])
        self.data = np.maximum(raw.astype(np.float32) - black, 0.0)
        self.brightness = float(self.data.mean())

    def good(self) -> bool:
        return self.data.size > 0

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    def is_more_exposed_than(self, other: Image) -> bool:
        return self.brightness > other.brightness


class ExposureStack:
    """Ordered container of exposures feeding the compose stage."""

    def __init__(self):
        self.images: list[Image] = []
        self.flip = 0
        self.saturation_level = math.inf
        self.crop_box: tuple[int, int, int, int] | None = None
        self.mask: np.ndarray | None = None
        self._width = 0
        self._height = 0

    def __len__(self) -> int:
        return len(self.images)

    def size(self) -> int:
        return len(self.images)

    def clear(self) -> None:
        self.images.clear()
        self.flip = 0
        self.saturation_level = math.inf
        self.crop_box = None
        self.mask = None
        self._width = self._height = 0

    def keys(self) -> list[int | None]:
        """Descriptor keys in stack order."""
        return [image.key for image in self.images]

    def get_image(self, i: int) -> Image:
        return self.images[i]

    def get_width(self) -> int:
        return self._width

    def get_height(self) -> int:
        return self._height

    def add_image(self, image: Image) -> int:
        """
        Insert an exposure, keeping the most exposed image first.

        Returns
        -------
        int
            Position at which the image was inserted.
        """
        if not self.images:
            self._width, self._height = image.width, image.height
        pos = 0
        while pos < len(self.images) and not image.is_more_exposed_than(self.images[pos]):
            pos += 1
        self.images.insert(pos, image)
        logger.debug("Added %s at position %d (brightness %.1f)", image.file_name, pos, image.brightness)
        return pos

    def set_flip(self, flip: int) -> None:
        self.flip = flip

    def calculate_saturation_level(self, params: RawParameters, use_custom_wl: bool = False) -> None:
        """
        Set the saturation threshold of every exposure.

        Without a custom white level, the brightest value actually found in
        the most exposed image caps the decoded level: some cameras report
        a white level their sensor never reaches.
        """
        level = float(params.max - params.black)
        if not use_custom_wl and self.images:
            observed = float(np.max(self.images[0].data))
            if 0 < observed < level:
                level = observed
        self.saturation_level = level
        threshold = SATURATION_FRACTION * level
        for image in self.images:
            image.sat_threshold = threshold
        logger.debug("Saturation level %.0f, threshold %.0f", level, threshold)

    def align(self) -> None:
        """Estimate even integer offsets of every exposure relative to the first."""
        for i in range(1, len(self.images)):
            reference = self.images[i - 1]
            image = self.images[i]
            gain = reference.brightness / image.brightness if image.brightness > 0 else 1.0
            dy, dx = estimate_mosaic_shift(
                image.data, reference.data, gain=gain, saturation=image.sat_threshold
            )
            image.dy = reference.dy + dy
            image.dx = reference.dx + dx
            logger.info("Aligned %s: offset (%d, %d)", image.file_name, image.dy, image.dx)

    def crop(self) -> None:
        """Restrict the output to the area covered by every exposure."""
        if not self.images:
            return
        h, w = self.images[0].height, self.images[0].width
        top = max(max(image.dy for image in self.images), 0)
        bottom = min(min(h + image.dy for image in self.images), h)
        left = max(max(image.dx for image in self.images), 0)
        right = min(min(w + image.dx for image in self.images), w)
        # keep CFA phase
        top += top & 1
        left += left & 1
        bottom -= (bottom - top) & 1
        right -= (right - left) & 1
        if bottom <= top or right <= left:
            logger.warning("Exposures do not overlap, skipping crop")
            return
        self.crop_box = (top, bottom, left, right)
        self._height, self._width = bottom - top, right - left
        logger.info("Cropped to (%d:%d, %d:%d) -> %dx%d", top, bottom, left, right, self._width, self._height)

    def is_cropped(self) -> bool:
        return self.crop_box is not None

    def aligned(self, i: int) -> np.ndarray:
        """Exposure i shifted by its offset and cropped; uncovered pixels are inf."""
        image = self.images[i]
        data = image.data
        if image.dy or image.dx:
            data = apply_integer_shift(data, image.dy, image.dx, fill_value=np.inf)
        if self.crop_box is not None:
            top, bottom, left, right = self.crop_box
            data = data[top:bottom, left:right]
        return data

    def compute_response_functions(self) -> None:
        """
        Fit the gain of every exposure relative to the most exposed one.

        Each gain is fitted by least squares against the previous exposure
        on pixels unsaturated in both; the gains are chained.
        """
        if not self.images:
            return
        self.images[0].response = 1.0
        previous = self.aligned(0)
        for i in range(1, len(self.images)):
            current = self.aligned(i)
            ref_image, image = self.images[i - 1], self.images[i]
            valid = (
                (previous < ref_image.sat_threshold)
                & (current < image.sat_threshold)
                & (previous > 0)
                & (current > 0)
            )
            if np.count_nonzero(valid) >= MIN_RESPONSE_SAMPLES:
                a = previous[valid].astype(np.float64)
                b = current[valid].astype(np.float64)
                gain = float(np.dot(a, b) / np.dot(b, b))
            elif image.brightness > 0:
                gain = ref_image.brightness / image.brightness
            else:
                gain = 1.0
            image.response = ref_image.response * gain
            logger.debug("Response of %s: %.4f", image.file_name, image.response)
            previous = current

    def generate_mask(self) -> np.ndarray:
        """
        Index of the most exposed unsaturated exposure at every pixel.

        Pixels saturated in every exposure take the last (least exposed) one.
        """
        n = len(self.images)
        mask = np.full((self._height, self._width), max(n - 1, 0), dtype=np.uint8)
        for i in reversed(range(n - 1)):
            unsaturated = self.aligned(i) < self.images[i].sat_threshold
            mask[unsaturated] = i
        self.mask = mask
        return mask

    def get_mask(self) -> np.ndarray:
        if self.mask is None:
            return self.generate_mask()
        return self.mask

    def get_max_exposure(self) -> float:
        """Exposure span of the stack in EV (log2 of the largest gain)."""
        if not self.images:
            return 0.0
        return math.log2(max(max(image.response for image in self.images), 1.0))

    def compose(self, params: RawParameters, feather_radius: int = 3) -> np.ndarray:
        """
        Blend the exposures into one floating point mosaic.

        Parameters
        ----------
        params : RawParameters
            Output descriptor; its white level sets the output scale.
        feather_radius : int, default 3
            Gaussian blur radius applied to the mask, in pixels.

        Returns
        -------
        np.ndarray
            (height, width) float32 mosaic, black level 0, maximum at
            ``params.max``.
        """
        mask = self.get_mask().astype(np.float32)
        if feather_radius > 0:
            mask = gaussian_filter(mask, sigma=feather_radius)

        composed = np.zeros(mask.shape, dtype=np.float64)
        for i, image in enumerate(self.images):
            weight = np.clip(1.0 - np.abs(mask - i), 0.0, 1.0)
            if not weight.any():
                continue
            values = self.aligned(i).astype(np.float64) * image.response
            values[~np.isfinite(values)] = 0.0
            composed += weight * values

        peak = composed.max() if composed.size else 0.0
        if peak > 0:
            composed *= params.max / peak
        logger.info("Composed %d exposures into %dx%d", len(self.images), self._width, self._height)
        return composed.astype(np.float32)
