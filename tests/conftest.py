"""
Pytest configuration and fixtures.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from pathlib import Path

import numpy as np
import pytest
from scipy.ndimage import gaussian_filter

from hdrmerge.errors import (
    MetadataDestinationUnreadable,
    MetadataSourceUnreadable,
    MetadataWriteFailure,
)
from hdrmerge.exif import MetadataRecords
from hdrmerge.params import RawParameters
from hdrmerge.stack import Image

RGGB = ((0, 1), (3, 2))

GEOMETRY = {
    "raw_width": 32,
    "raw_height": 32,
    "width": 32,
    "height": 32,
    "filters": RGGB,
    "cdesc": "RGBG",
    "black": 64,
    "max": 4095,
}


def make_params(file_name="IMG_0001.CR2", **overrides):
    """RawParameters of a 32x32 RGGB frame, black 64, white 4095."""
    return RawParameters(file_name=file_name, **{**GEOMETRY, **overrides})


@pytest.fixture
def params_factory():
    return make_params


@pytest.fixture
def textured_scene():
    """Create a smooth random scene with values in [0, 1]."""
    def _create(height=64, width=64, sigma=2.0, seed=42):
        rng = np.random.default_rng(seed)
        scene = gaussian_filter(rng.random((height, width)), sigma)
        scene -= scene.min()
        return (scene / scene.max()).astype(np.float32)

    return _create


@pytest.fixture
def exposure():
    """Create a raw frame: black + scene * gain, clipped at white."""
    def _create(scene, gain=1.0, black=64, white=4095):
        raw = black + scene * gain
        return np.clip(raw, 0, white).astype(np.uint16)

    return _create


class FakeDecoder:
    """
    Decoding backend serving in-memory frames.

    ``frames`` maps a file name to its list of frames; each frame is a
    (raw array or None, descriptor overrides) pair. A None array makes the
    decoding fail.
    """

    def __init__(self, frames=None, intervals=None):
        self.frames = frames or {}
        self.intervals = intervals or {}
        self.calls = []

    def load_raw_image(self, file_name, shot_select=0):
        self.calls.append((file_name, shot_select))
        raw, overrides = self.frames[file_name][shot_select]
        params = make_params(file_name, **overrides)
        if raw is None:
            return None, params
        return Image(raw, params), params

    def get_frame_count(self, file_name):
        return len(self.frames.get(file_name, []))

    def get_creation_interval(self, file_name):
        return self.intervals.get(file_name)


@pytest.fixture
def fake_decoder():
    return FakeDecoder


class MemoryMetadataBackend:
    """
    Metadata backend keeping everything in memory.

    ``sources`` maps source file names to their records; ``destination``
    is what the output container holds before the transfer (None makes it
    unreadable). Writes are recorded and the bytes written to disk.
    """

    def __init__(self, sources=None, destination=None, fail_write=False):
        self.sources = sources or {}
        self.destination = destination if destination is not None else MetadataRecords()
        self.fail_write = fail_write
        self.reads = []
        self.writes = []

    def read_file(self, path):
        self.reads.append(str(path))
        if str(path) not in self.sources:
            raise MetadataSourceUnreadable(f"{path}: no such file")
        return self.sources[str(path)].copy()

    def read_bytes(self, data):
        if self.destination is None:
            raise MetadataDestinationUnreadable("not a TIFF container")
        return self.destination.copy()

    def write(self, data, changes, path):
        if self.fail_write:
            raise MetadataWriteFailure(f"{path}: read-only")
        self.writes.append((changes, str(path)))
        Path(path).write_bytes(data)


@pytest.fixture
def memory_backend():
    return MemoryMetadataBackend


@pytest.fixture
def source_records():
    """Metadata of a typical raw file."""
    return MetadataRecords(
        xmp={
            "Xmp.dc.creator": "Jane Doe",
            "Xmp.tiff.Orientation": 1,
            "Xmp.xmp.Rating": 4,
        },
        iptc={
            "Iptc.Application2.Keywords": ["hdr", "landscape"],
            "Iptc.Application2.City": "Lyon",
        },
        exif={
            "Exif.Image.Make": "Canon",
            "Exif.Image.Model": "Canon EOS 5D Mark IV",
            "Exif.Image.Artist": "Jane Doe",
            "Exif.Image.Orientation": 1,
            "Exif.Photo.ExposureTime": 0.01,
            "Exif.Photo.FNumber": 8.0,
            "Exif.Canon.ModelID": 2147484293,
            "Exif.Thumbnail.JPEGInterchangeFormat": 12345,
            "Exif.Thumbnail.Compression": 6,
            "Exif.SubImage2.Compression": 7,
            "Exif.Pentax.PreviewOffset": 999,
        },
    )
