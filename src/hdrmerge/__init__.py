"""
hdrmerge - HDR exposure merging for raw files.

Merges bracketed raw exposures of the same scene into a single floating
point DNG, carrying over the metadata of the input files.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com

Example
-------
>>> from hdrmerge import ImageIO, LoadOptions, SaveOptions
>>> io = ImageIO()
>>> result = io.load(LoadOptions(file_names=["IMG_0001.CR2", "IMG_0002.CR2"]))
>>> result.raise_for_error()
>>> io.save(SaveOptions(file_name=io.build_output_file_name()))

Example (batch mode)
--------------------
>>> from hdrmerge import get_bracketed_sets
>>> for options in get_bracketed_sets(LoadOptions(file_names=names, batch_gap=2.0)):
...     print(options.file_names)
"""

from .config import LoadOptions, SaveOptions
from .utils import __version__, __version_info__, get_version_banner

# Primary entry points
from .image_io import ImageIO, LoadResult
from .batch import get_bracketed_sets

# Descriptors
from .params import DateInterval, RawParameters

# Errors
from .errors import (
    DecodeFailed,
    FormatMismatch,
    HdrMergeError,
    LoadError,
    MetadataDestinationUnreadable,
    MetadataError,
    MetadataSourceUnreadable,
    MetadataWriteFailure,
)

# Output names
from .filenames import FileNameManipulator
from .template import build_output_file_name, replace_arguments, resolve_output_file_name

# Metadata
from .exif import (
    DEFAULT_RULES,
    ExifRules,
    ExifToolBackend,
    ExifTransfer,
    MetadataRecords,
    TransferReport,
    transfer,
)

# Decoding, stack and writer
from .io import RawDecoder
from .stack import ExposureStack, Image
from .dng import DngFloatWriter, render_preview

# Progress
from .progress import CallbackProgress, LoggingProgress, NullProgress, ProgressIndicator

__all__ = [
    # Version
    "__version__",
    "__version_info__",
    "get_version_banner",
    # Config
    "LoadOptions",
    "SaveOptions",
    # Main entry points
    "ImageIO",
    "LoadResult",
    "get_bracketed_sets",
    # Descriptors
    "DateInterval",
    "RawParameters",
    # Errors
    "HdrMergeError",
    "LoadError",
    "DecodeFailed",
    "FormatMismatch",
    "MetadataError",
    "MetadataSourceUnreadable",
    "MetadataDestinationUnreadable",
    "MetadataWriteFailure",
    # Output names
    "FileNameManipulator",
    "replace_arguments",
    "build_output_file_name",
    "resolve_output_file_name",
    # Metadata
    "DEFAULT_RULES",
    "ExifRules",
    "ExifToolBackend",
    "ExifTransfer",
    "MetadataRecords",
    "TransferReport",
    "transfer",
    # Decoding, stack and writer
    "RawDecoder",
    "ExposureStack",
    "Image",
    "DngFloatWriter",
    "render_preview",
    # Progress
    "ProgressIndicator",
    "NullProgress",
    "LoggingProgress",
    "CallbackProgress",
]
