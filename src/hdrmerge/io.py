"""
Raw decoding backend.

Handles:
- Frame decoding with LibRaw (rawpy), including multi-frame files
- Frame count probing
- Capture interval extraction from EXIF (exifread)

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import exifread
import numpy as np
import rawpy

from .params import DateInterval, RawParameters
from .stack import Image

logger = logging.getLogger(__name__)

MAX_FRAMES = 4
"""Largest number of frames a multi-frame raw file may hold."""

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def _ratio_to_float(value: Any) -> float | None:
    """Convert an exifread value (Ratio, int, list) to float."""
    if value is None:
        return None
    values = getattr(value, "values", value)
    if isinstance(values, (list, tuple)):
        if not values:
            return None
        values = values[0]
    try:
        if hasattr(values, "num") and hasattr(values, "den"):
            return float(values.num) / float(values.den) if values.den else None
        return float(values)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def read_exif_tags(path: str | Path) -> dict[str, Any]:
    """exifread tags of a raw file, empty when it cannot be read."""
    try:
        with open(path, "rb") as f:
            return exifread.process_file(f, details=False)
    except OSError as e:
        logger.debug("Cannot read EXIF from %s: %s", path, e)
        return {}


def exif_timing(tags: dict[str, Any]) -> tuple[datetime | None, float]:
    """
    Capture time and exposure duration from exifread tags.

    Returns
    -------
    tuple[datetime or None, float]
        (capture time, shutter seconds). Shutter is 0.0 when unknown.
    """
    stamp = tags.get("EXIF DateTimeOriginal") or tags.get("Image DateTime")
    timestamp = None
    if stamp is not None:
        try:
            timestamp = datetime.strptime(str(stamp).strip(), EXIF_DATE_FORMAT)
        except ValueError:
            logger.debug("Unparsable EXIF date: %s", stamp)

    shutter = _ratio_to_float(tags.get("EXIF ExposureTime")) or 0.0
    return timestamp, shutter


def read_exif_timing(path: str | Path) -> tuple[datetime | None, float]:
    """Capture time and exposure duration of a raw file."""
    return exif_timing(read_exif_tags(path))


def _pattern_to_filters(pattern: np.ndarray | None) -> tuple[tuple[int, int], tuple[int, int]] | None:
    if pattern is None:
        return None
    pattern = np.asarray(pattern)
    if pattern.shape != (2, 2):
        return None
    return (
        (int(pattern[0, 0]), int(pattern[0, 1])),
        (int(pattern[1, 0]), int(pattern[1, 1])),
    )


def params_from_rawpy(raw: Any, params: RawParameters) -> None:
    """
    Fill a descriptor from an opened rawpy object.

    Parameters
    ----------
    raw : rawpy.RawPy
        Opened and unpacked raw file.
    params : RawParameters
        Descriptor to fill (file_name already set).
    """
    sizes = raw.sizes
    params.raw_width = int(sizes.raw_width)
    params.raw_height = int(sizes.raw_height)
    params.width = int(sizes.width)
    params.height = int(sizes.height)
    params.top_margin = int(sizes.top_margin)
    params.left_margin = int(sizes.left_margin)
    params.flip = int(sizes.flip)
    params.filters = _pattern_to_filters(raw.raw_pattern)
    params.cdesc = raw.color_desc.decode("ascii", errors="replace")

    blacks = [int(b) for b in raw.black_level_per_channel]
    params.black = min(blacks)
    params.cblack = tuple(b - params.black for b in (blacks + [blacks[-1]] * 4)[:4])
    params.max = int(raw.white_level)
    cam_mul = [float(m) for m in raw.camera_whitebalance]
    params.cam_mul = tuple((cam_mul + [cam_mul[1]] * 4)[:4])
    matrix = np.asarray(raw.rgb_xyz_matrix, dtype=np.float64)
    if matrix.shape[0] >= 3 and matrix[:3].any():
        params.extra["color_matrix"] = matrix[:3, :3].tolist()


class RawDecoder:
    """
    LibRaw based decoding backend.

    Any object with the same three methods can replace it in ImageIO,
    which is how the tests inject synthetic exposures.
    """

    def load_raw_image(self, file_name: str, shot_select: int = 0) -> tuple[Image | None, RawParameters]:
        """
        Decode one frame of a raw file.

        Parameters
        ----------
        file_name : str
            Raw file path.
        shot_select : int, default 0
            Frame index for multi-frame files.

        Returns
        -------
        tuple[Image or None, RawParameters]
            The decoded exposure and its descriptor. The exposure is None
            when the file cannot be opened, unpacked, or uses an
            unsupported sensor layout.
        """
        params = RawParameters(file_name=file_name)
        try:
            with rawpy.imread(str(file_name), shot_select=shot_select) as raw:
                if raw.raw_type != rawpy.RawType.Flat:
                    logger.debug("Unsupported raw type %s in %s", raw.raw_type, file_name)
                    return None, params
                params_from_rawpy(raw, params)
                if params.filters is None:
                    logger.debug("Unsupported filter array in %s", file_name)
                    return None, params
                buffer = raw.raw_image.copy()
        except (rawpy.LibRawError, OSError) as e:
            logger.debug("LibRaw failed to open %s (frame %d): %s", file_name, shot_select, e)
            return None, params

        tags = read_exif_tags(file_name)
        params.timestamp, params.shutter = exif_timing(tags)
        params.maker = str(tags.get("Image Make", "")).strip()
        params.model = str(tags.get("Image Model", "")).strip()
        return Image(buffer, params), params

    def get_frame_count(self, file_name: str) -> int:
        """
        Number of frames stored in a raw file.

        Frames are probed one past MAX_FRAMES so that files with too many
        frames can be told apart from valid ones. Returns 0 if the file
        cannot be opened at all.
        """
        count = 0
        for shot in range(MAX_FRAMES + 1):
            try:
                with rawpy.imread(str(file_name), shot_select=shot):
                    count += 1
            except (rawpy.LibRawError, OSError):
                break
        logger.debug("Number of frames in %s: %d", file_name, count)
        return count

    def get_creation_interval(self, file_name: str) -> DateInterval | None:
        """Capture interval from EXIF, or None without a timestamp."""
        params = RawParameters(file_name=file_name)
        params.timestamp, params.shutter = read_exif_timing(file_name)
        return params.creation_interval
