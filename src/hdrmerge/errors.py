"""
Exception taxonomy for hdrmerge.

Load errors carry the 0-based index of the failing item so that callers
can name the exact file that stopped a batch. Metadata errors are
recorded and logged by the transfer step; they never abort a merge.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations


class HdrMergeError(Exception):
    """Base class for all hdrmerge errors."""


class LoadError(HdrMergeError):
    """An exposure could not be added to the stack."""

    format_error = False

    def __init__(self, index: int, file_name: str = "", detail: str = ""):
        self.index = index
        self.file_name = file_name
        self.detail = detail
        message = f"item {index}"
        if file_name:
            message += f" ({file_name})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DecodeFailed(LoadError):
    """The decoding backend could not produce a usable raw buffer."""


class FormatMismatch(LoadError):
    """The exposure geometry or CFA layout differs from the first exposure."""

    format_error = True


class MetadataError(HdrMergeError):
    """Base class for metadata transfer problems."""


class MetadataSourceUnreadable(MetadataError):
    """Source metadata could not be read; the transfer degrades."""


class MetadataDestinationUnreadable(MetadataError):
    """The in-memory output container could not be parsed."""


class MetadataWriteFailure(MetadataError):
    """Fused metadata could not be persisted to the destination file."""
