"""
Metadata transfer from a source raw file into a freshly written DNG.

Three namespaces are merged, each under its own rule:

- XMP: copy every source entry outside the 'tiff' group that the
  destination does not already have.
- IPTC: copy every source entry the destination does not already have.
- EXIF: force-copy identity tags (make, model, artist, copyright, DNG
  private data, opcode lists), mark the raw sub-image as the primary
  image, then copy the remaining source tags the destination lacks,
  except preview/thumbnail pointers and thumbnail or image groups.

The EXIF rules are plain data (ExifRules) so they can be tested and
extended without touching the merge code.

Keys use the dotted form ``Family.Group.Tag``, e.g. ``Exif.Image.Make``,
``Xmp.dc.creator`` or ``Iptc.Application2.Keywords``.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException

from .errors import (
    MetadataDestinationUnreadable,
    MetadataError,
    MetadataSourceUnreadable,
    MetadataWriteFailure,
)

logger = logging.getLogger(__name__)

XMP_EXCLUDED_GROUPS = frozenset({"tiff"})

PRIMARY_IMAGE_KEY = "Exif.SubImage1.NewSubfileType"
PRIMARY_IMAGE = 0
"""NewSubfileType value of a full-resolution primary image."""


@dataclass(frozen=True)
class ExifRules:
    """Rule table for the EXIF namespace."""

    forced_keys: tuple[str, ...] = (
        # Make and model must come from the input so makernotes are read correctly
        "Exif.Image.Make",
        "Exif.Image.Model",
        "Exif.Image.Artist",
        "Exif.Image.Copyright",
        "Exif.Image.DNGPrivateData",
        # Opcodes generated by Adobe DNG converter
        "Exif.SubImage1.OpcodeList1",
        "Exif.SubImage1.OpcodeList2",
        "Exif.SubImage1.OpcodeList3",
    )
    """Copied even when the destination already has them."""

    excluded_keys: frozenset[str] = frozenset({
        "Exif.OlympusCs.PreviewImageStart",
        "Exif.OlympusCs.PreviewImageLength",
        "Exif.Thumbnail.JPEGInterchangeFormat",
        "Exif.Thumbnail.JPEGInterchangeFormatLength",
        "Exif.NikonPreview.JPEGInterchangeFormat",
        "Exif.NikonPreview.JPEGInterchangeFormatLength",
        "Exif.Pentax.PreviewOffset",
        "Exif.Pentax.PreviewLength",
        "Exif.PentaxDng.PreviewOffset",
        "Exif.PentaxDng.PreviewLength",
        "Exif.Minolta.ThumbnailOffset",
        "Exif.Minolta.ThumbnailLength",
        "Exif.SonyMinolta.ThumbnailOffset",
        "Exif.SonyMinolta.ThumbnailLength",
        "Exif.Olympus.ThumbnailImage",
        "Exif.Olympus2.ThumbnailImage",
        "Exif.Minolta.Thumbnail",
        "Exif.PanasonicRaw.PreviewImage",
        "Exif.SamsungPreview.JPEGInterchangeFormat",
        "Exif.SamsungPreview.JPEGInterchangeFormatLength",
    })
    """Preview and thumbnail pointers that would dangle in the output."""

    excluded_group_prefixes: tuple[str, ...] = ("Thumb", "SubThumb", "Image", "SubImage")
    """Groups describing the source's own image structure."""

    primary_image_key: str = PRIMARY_IMAGE_KEY

    def is_excluded(self, key: str) -> bool:
        if key in self.excluded_keys:
            return True
        return group_name(key).startswith(self.excluded_group_prefixes)


DEFAULT_RULES = ExifRules()


def group_name(key: str) -> str:
    """Group part of a dotted key ('Exif.Image.Make' -> 'Image')."""
    parts = key.split(".", 2)
    return parts[1] if len(parts) > 2 else ""


@dataclass
class MetadataRecords:
    """The three metadata namespaces of one image."""

    xmp: dict[str, Any] = field(default_factory=dict)
    iptc: dict[str, Any] = field(default_factory=dict)
    exif: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> MetadataRecords:
        return MetadataRecords(dict(self.xmp), dict(self.iptc), dict(self.exif))

    def changes_from(self, original: MetadataRecords) -> MetadataRecords:
        """Entries added or modified with respect to ``original``."""
        def _diff(new: dict, old: dict) -> dict:
            return {k: v for k, v in new.items() if k not in old or old[k] != v}

        return MetadataRecords(
            _diff(self.xmp, original.xmp),
            _diff(self.iptc, original.iptc),
            _diff(self.exif, original.exif),
        )

    def __len__(self) -> int:
        return len(self.xmp) + len(self.iptc) + len(self.exif)


def copy_xmp(src: dict[str, Any], dst: dict[str, Any]) -> int:
    """Copy missing XMP entries outside the excluded groups. Returns the count added."""
    added = 0
    for key, value in src.items():
        if group_name(key) not in XMP_EXCLUDED_GROUPS and key not in dst:
            dst[key] = value
            added += 1
    return added


def copy_iptc(src: dict[str, Any], dst: dict[str, Any]) -> int:
    """Copy missing IPTC entries. Returns the count added."""
    added = 0
    for key, value in src.items():
        if key not in dst:
            dst[key] = value
            added += 1
    return added


def copy_exif(src: dict[str, Any], dst: dict[str, Any], rules: ExifRules = DEFAULT_RULES) -> int:
    """
    Merge EXIF entries following ``rules``.

    Returns
    -------
    int
        Number of entries added by the generic copy (forced keys excluded).
    """
    for key in rules.forced_keys:
        if key in src:
            dst[key] = src[key]

    # Must be forced even if already set, or the raw sub-image is not primary
    dst[rules.primary_image_key] = PRIMARY_IMAGE

    added = 0
    for key, value in src.items():
        if not rules.is_excluded(key) and key not in dst:
            dst[key] = value
            added += 1
    return added


class MetadataBackend(Protocol):
    def read_file(self, path: str | Path) -> MetadataRecords:
        ...

    def read_bytes(self, data: bytes) -> MetadataRecords:
        ...

    def write(self, data: bytes, changes: MetadataRecords, path: str | Path) -> None:
        ...


@dataclass
class TransferReport:
    """Outcome of one metadata transfer."""

    destination_read: bool = False
    source_read: bool = False
    written: bool = False
    xmp_added: int = 0
    iptc_added: int = 0
    exif_added: int = 0
    errors: list[MetadataError] = field(default_factory=list)


class ExifTransfer:
    """
    Fuse the metadata of ``src_file`` into the DNG bytes ``data`` and
    write the result to ``dst_file``.

    The destination container is owned exclusively by this object for
    the duration of copy_metadata().
    """

    def __init__(
        self,
        src_file: str | Path,
        dst_file: str | Path,
        data: bytes,
        backend: MetadataBackend | None = None,
        rules: ExifRules = DEFAULT_RULES,
    ):
        self.src_file = src_file
        self.dst_file = dst_file
        self.data = data
        self.backend = backend if backend is not None else ExifToolBackend()
        self.rules = rules
        self.dst: MetadataRecords | None = None

    def copy_metadata(self) -> TransferReport:
        report = TransferReport()
        try:
            self.dst = self.backend.read_bytes(self.data)
        except MetadataDestinationUnreadable as e:
            logger.error("Cannot read output metadata: %s", e)
            report.errors.append(e)
            self._write_plain(report)
            return report
        report.destination_read = True
        original = self.dst.copy()

        try:
            src = self.backend.read_file(self.src_file)
        except MetadataSourceUnreadable as e:
            logger.warning("Cannot read metadata of %s: %s", self.src_file, e)
            report.errors.append(e)
            self.dst.exif[self.rules.primary_image_key] = PRIMARY_IMAGE
        else:
            report.source_read = True
            report.xmp_added = copy_xmp(src.xmp, self.dst.xmp)
            report.iptc_added = copy_iptc(src.iptc, self.dst.iptc)
            report.exif_added = copy_exif(src.exif, self.dst.exif, self.rules)
            logger.debug(
                "Copied %d XMP, %d IPTC, %d EXIF entries from %s",
                report.xmp_added, report.iptc_added, report.exif_added, self.src_file,
            )

        changes = self.dst.changes_from(original)
        try:
            self.backend.write(self.data, changes, self.dst_file)
            report.written = True
        except MetadataWriteFailure as e:
            logger.error("Cannot write metadata to %s: %s", self.dst_file, e)
            report.errors.append(e)
            self._write_plain(report)
        return report

    def _write_plain(self, report: TransferReport) -> None:
        """Write the container without metadata changes so the image is never lost."""
        try:
            Path(self.dst_file).write_bytes(self.data)
        except OSError as e:
            logger.error("Cannot write %s: %s", self.dst_file, e)
            report.errors.append(MetadataWriteFailure(str(e)))


def transfer(
    src_file: str | Path,
    dst_file: str | Path,
    data: bytes,
    backend: MetadataBackend | None = None,
) -> TransferReport:
    """Copy metadata from ``src_file`` into ``data`` and write ``dst_file``."""
    return ExifTransfer(src_file, dst_file, data, backend).copy_metadata()


# =============================================================================
# EXIFTOOL BACKEND
# =============================================================================

_EXIF_GROUPS = {
    "IFD0": "Image",
    "IFD1": "Thumbnail",
    "ExifIFD": "Photo",
    "GPS": "GPSInfo",
    "InteropIFD": "Iop",
}
_EXIF_GROUPS_REVERSE = {v: k for k, v in _EXIF_GROUPS.items()}

READ_ARGS = ["-G0:1", "-a", "-n", "-b"]


def from_exiftool_key(key: str) -> tuple[str, str] | None:
    """
    Translate an exiftool ``Family0:Family1:Tag`` key.

    Returns
    -------
    tuple[str, str] or None
        (namespace, dotted key) with namespace in {'xmp', 'iptc', 'exif'},
        or None for groups that are not transferable (File, Composite...).
    """
    parts = key.split(":")
    if len(parts) != 3:
        return None
    family0, family1, tag = parts
    if family0 == "EXIF":
        if family1 in _EXIF_GROUPS:
            group = _EXIF_GROUPS[family1]
        elif family1.startswith("SubIFD"):
            group = f"SubImage{int(family1[6:] or 0) + 1}"
        else:
            group = family1
        return "exif", f"Exif.{group}.{tag}"
    if family0 == "MakerNotes":
        return "exif", f"Exif.{family1}.{tag}"
    if family0 == "XMP" and family1.startswith("XMP-"):
        return "xmp", f"Xmp.{family1[4:]}.{tag}"
    if family0 == "IPTC":
        return "iptc", f"Iptc.Application2.{tag}"
    return None


def to_exiftool_tag(key: str) -> str:
    """Translate a dotted key into an exiftool ``Group:Tag`` write name."""
    family, group, tag = key.split(".", 2)
    if family == "Xmp":
        return f"XMP-{group}:{tag}"
    if family == "Iptc":
        return f"IPTC:{tag}"
    if group in _EXIF_GROUPS_REVERSE:
        return f"{_EXIF_GROUPS_REVERSE[group]}:{tag}"
    if group.startswith("SubImage") and group[8:].isdigit():
        n = int(group[8:])
        return f"SubIFD{n - 1 if n > 1 else ''}:{tag}"
    return f"{group}:{tag}"


def _json_value(value: Any) -> Any:
    """exiftool JSON form of a tag value; binary data is base64 encoded."""
    if isinstance(value, (bytes, bytearray)):
        return "base64:" + base64.b64encode(value).decode("ascii")
    return value


def records_from_exiftool(block: dict[str, Any]) -> MetadataRecords:
    records = MetadataRecords()
    for key, value in block.items():
        translated = from_exiftool_key(key)
        if translated is None:
            continue
        namespace, dotted = translated
        getattr(records, namespace)[dotted] = value
    return records


class ExifToolBackend:
    """Read and write metadata with the exiftool command line program."""

    def __init__(self, executable: str | None = None):
        self.executable = executable

    def _helper(self) -> ExifToolHelper:
        kwargs = {"common_args": READ_ARGS}
        if self.executable:
            kwargs["executable"] = self.executable
        return ExifToolHelper(**kwargs)

    def _read(self, path: str | Path) -> MetadataRecords:
        with self._helper() as et:
            blocks = et.get_metadata(str(path))
        if not blocks:
            raise ValueError(f"no metadata returned for {path}")
        return records_from_exiftool(blocks[0])

    def read_file(self, path: str | Path) -> MetadataRecords:
        try:
            return self._read(path)
        except (ExifToolException, OSError, ValueError) as e:
            raise MetadataSourceUnreadable(f"{path}: {e}") from e

    def read_bytes(self, data: bytes) -> MetadataRecords:
        fd, tmp = tempfile.mkstemp(suffix=".dng")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            return self._read(tmp)
        except (ExifToolException, OSError, ValueError) as e:
            raise MetadataDestinationUnreadable(str(e)) from e
        finally:
            Path(tmp).unlink(missing_ok=True)

    def write(self, data: bytes, changes: MetadataRecords, path: str | Path) -> None:
        """
        Write ``data`` to ``path`` with ``changes`` applied.

        The container is written next to the destination first and moved
        into place once exiftool succeeded.
        """
        path = Path(path)
        part = path.with_name(path.name + ".part")
        tags: dict[str, Any] = {}
        for namespace in (changes.xmp, changes.iptc, changes.exif):
            for key, value in namespace.items():
                tags[to_exiftool_tag(key)] = _json_value(value)

        json_path = None
        try:
            part.write_bytes(data)
            if tags:
                fd, json_path = tempfile.mkstemp(suffix=".json")
                with os.fdopen(fd, "w") as f:
                    json.dump([{"SourceFile": "*", **tags}], f)
                with self._helper() as et:
                    et.execute(f"-json={json_path}", "-overwrite_original", "-n", str(part))
            os.replace(part, path)
        except (ExifToolException, OSError) as e:
            part.unlink(missing_ok=True)
            raise MetadataWriteFailure(f"{path}: {e}") from e
        finally:
            if json_path is not None:
                Path(json_path).unlink(missing_ok=True)
        logger.debug("Wrote %d metadata entries to %s", len(tags), path)
