"""
Floating point DNG writer and preview rendering.

The DNG is assembled in memory with tifffile:

- IFD0: 8-bit RGB preview (NewSubfileType 1) carrying the DNG version,
  camera model and orientation tags;
- SubIFD 1: the merged CFA mosaic as IEEE floats (NewSubfileType 0).

The bytes are then handed to the metadata transfer, which copies the
input's EXIF/XMP/IPTC and writes the destination file.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

import numpy as np
import tifffile

from .debayer import RGGB, debayer_superpixel
from .exif import MetadataBackend, TransferReport, transfer
from .params import RawParameters
from .utils import __version__, to_uint8

logger = logging.getLogger(__name__)

THUMBNAIL_WIDTH = 256
"""IFD0 image width when no preview is requested."""

RATIONAL_DENOMINATOR = 1_000_000

PREVIEW_GAMMA = 1 / 2.2

# LibRaw flip -> TIFF Orientation
_ORIENTATION = {0: 1, 3: 3, 5: 8, 6: 6}

_CFA_COLORS = {"R": 0, "G": 1, "B": 2}


def _rationals(values) -> list[int]:
    out: list[int] = []
    for value in values:
        out.extend((int(round(value * RATIONAL_DENOMINATOR)), RATIONAL_DENOMINATOR))
    return out


def _resize_nearest(image: np.ndarray, width: int) -> np.ndarray:
    h, w = image.shape[:2]
    if width <= 0 or w == 0 or width == w:
        return image
    height = max(1, round(h * width / w))
    rows = (np.arange(height) * h // height).astype(np.intp)
    cols = (np.arange(width) * w // width).astype(np.intp)
    return image[rows][:, cols]


def _as_shot_neutral(params: RawParameters) -> list[float]:
    """Inverse of the white balance multipliers, green normalized to 1."""
    cdesc = params.cdesc or "RGBG"
    muls = {}
    for index, letter in enumerate(cdesc[:4]):
        if letter in _CFA_COLORS and letter not in muls and params.cam_mul[index] > 0:
            muls[letter] = params.cam_mul[index]
    green = muls.get("G", 1.0)
    return [green / muls[c] if c in muls else 1.0 for c in "RGB"]


def render_preview(
    image: np.ndarray,
    params: RawParameters,
    exp_shift: float = 0.0,
    half_size: bool = True,
) -> np.ndarray:
    """
    Render an 8-bit RGB preview of a composed mosaic.

    Parameters
    ----------
    image : np.ndarray
        Composed mosaic, black 0 and white ``params.max``.
    params : RawParameters
        Output descriptor (CFA layout, white balance).
    exp_shift : float, default 0.0
        Exposure boost in EV. Highlights are compressed so that the white
        level still maps to white.
    half_size : bool, default True
        Produce one pixel per 2x2 block instead of a full size image.

    Returns
    -------
    np.ndarray
        (H, W, 3) uint8.
    """
    rgb = debayer_superpixel(image, params.filters or RGGB, params.cdesc or "RGBG")
    white = float(params.max) if params.max > 0 else max(float(image.max()), 1.0)
    wb = np.asarray(_as_shot_neutral(params), dtype=np.float32)
    rgb = np.clip(rgb / (wb * white), 0.0, 1.0)

    k = 2.0 ** max(exp_shift, 0.0)
    rgb = k * rgb / (1.0 + (k - 1.0) * rgb)
    preview = to_uint8(rgb ** PREVIEW_GAMMA)

    if not half_size:
        preview = np.repeat(np.repeat(preview, 2, axis=0), 2, axis=1)
        preview = preview[:params.height or None, :params.width or None]
    logger.debug("Preview %dx%d (exp shift %.2f EV)", preview.shape[1], preview.shape[0], exp_shift)
    return preview


class DngFloatWriter:
    """
    Write a composed mosaic as a floating point DNG.

    Parameters
    ----------
    metadata_backend : MetadataBackend, optional
        Passed to the metadata transfer (exiftool by default).
    """

    def __init__(self, metadata_backend: MetadataBackend | None = None):
        self.metadata_backend = metadata_backend
        self.bps = 16
        self.preview_width = 0
        self.preview: np.ndarray | None = None

    def set_bits_per_sample(self, bps: int) -> None:
        self.bps = bps

    def set_preview_width(self, width: int) -> None:
        self.preview_width = width

    def set_preview(self, preview: np.ndarray | None) -> None:
        self.preview = preview

    @property
    def sample_dtype(self) -> type:
        # 24-bit floats are stored as float32
        return np.float16 if self.bps == 16 else np.float32

    def _main_image(self, params: RawParameters) -> np.ndarray:
        if self.preview is None or self.preview.size == 0:
            return np.zeros((max(params.height // 8, 1), max(params.width // 8, 1), 3), dtype=np.uint8)
        width = self.preview_width if self.preview_width > 0 else THUMBNAIL_WIDTH
        return _resize_nearest(self.preview, min(width, self.preview.shape[1]))

    def _main_tags(self, params: RawParameters) -> list[tuple]:
        model = f"{params.maker} {params.model}".strip() or "Unknown"
        tags = [
            (271, "s", 0, params.maker or "Unknown", True),
            (272, "s", 0, params.model or "Unknown", True),
            (274, "H", 1, _ORIENTATION.get(params.flip, 1), True),
            (50706, "B", 4, (1, 4, 0, 0), True),
            (50707, "B", 4, (1, 1, 0, 0), True),
            (50708, "s", 0, model, True),
            (50728, "2I", 3, _rationals(_as_shot_neutral(params)), True),
        ]
        matrix = params.extra.get("color_matrix")
        if matrix is not None:
            values = np.asarray(matrix, dtype=np.float64)[:3, :3].ravel()
            flat = []
            for value in values:
                flat.extend((int(round(value * 10000)), 10000))
            tags.append((50721, "2i", 9, flat, True))
            tags.append((50778, "H", 1, 21, True))  # D65
        return tags

    def _raw_tags(self, params: RawParameters, height: int, width: int) -> list[tuple]:
        filters = params.filters or RGGB
        cdesc = params.cdesc or "RGBG"
        pattern = [_CFA_COLORS.get(cdesc[filters[y][x]], 1) for y in range(2) for x in range(2)]
        return [
            (33421, "H", 2, (2, 2), True),
            (33422, "B", 4, pattern, True),
            (50710, "B", 3, (0, 1, 2), True),
            (50711, "H", 1, 1, True),
            (50714, "I", 1, 0, True),
            (50717, "I", 1, int(params.max), True),
            (50719, "I", 2, (0, 0), True),
            (50720, "I", 2, (width, height), True),
        ]

    def build(self, image: np.ndarray, params: RawParameters) -> bytes:
        """Serialize the DNG into memory."""
        data = np.ascontiguousarray(image, dtype=self.sample_dtype)
        height, width = data.shape
        buffer = io.BytesIO()
        with tifffile.TiffWriter(buffer) as tif:
            tif.write(
                self._main_image(params),
                photometric="rgb",
                subfiletype=1,
                subifds=1,
                software=f"hdrmerge {__version__}",
                metadata=None,
                extratags=self._main_tags(params),
            )
            tif.write(
                data,
                photometric=tifffile.PHOTOMETRIC.CFA,
                subfiletype=0,
                metadata=None,
                extratags=self._raw_tags(params, height, width),
            )
        return buffer.getvalue()

    def write(self, image: np.ndarray, params: RawParameters, file_name: str | Path) -> TransferReport:
        """
        Write ``image`` to ``file_name`` with the metadata of ``params.file_name``.
        """
        data = self.build(image, params)
        logger.debug("DNG container: %d bytes, float%d samples", len(data), 8 * np.dtype(self.sample_dtype).itemsize)
        return transfer(params.file_name, file_name, data, self.metadata_backend)
