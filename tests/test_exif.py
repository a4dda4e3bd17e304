"""
Tests for the metadata fusion engine.

Tests cover:
- Per-namespace merge rules (XMP, IPTC, EXIF rule table)
- Transfer degradation when source or destination cannot be read
- Idempotence of a second transfer
- exiftool key translation and backend I/O (exiftool mocked)

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import json
from unittest.mock import patch

import pytest

from hdrmerge.errors import (
    MetadataDestinationUnreadable,
    MetadataSourceUnreadable,
    MetadataWriteFailure,
)
from hdrmerge.exif import (
    DEFAULT_RULES,
    PRIMARY_IMAGE,
    PRIMARY_IMAGE_KEY,
    ExifRules,
    ExifToolBackend,
    ExifTransfer,
    MetadataRecords,
    copy_exif,
    copy_iptc,
    copy_xmp,
    from_exiftool_key,
    group_name,
    records_from_exiftool,
    to_exiftool_tag,
    transfer,
)

SOURCE = "/raw/IMG_0001.CR2"


class TestNamespaceRules:
    """XMP and IPTC merge without overwriting."""

    def test_group_name(self):
        assert group_name("Exif.Image.Make") == "Image"
        assert group_name("Xmp.dc.creator") == "dc"
        assert group_name("Exif.Photo.Lens.Name") == "Photo"
        assert group_name("bogus") == ""

    def test_xmp_skips_tiff_group(self, source_records):
        dst = {}
        added = copy_xmp(source_records.xmp, dst)
        assert "Xmp.tiff.Orientation" not in dst
        assert dst["Xmp.dc.creator"] == "Jane Doe"
        assert added == 2

    def test_xmp_destination_wins(self, source_records):
        dst = {"Xmp.dc.creator": "hdrmerge"}
        copy_xmp(source_records.xmp, dst)
        assert dst["Xmp.dc.creator"] == "hdrmerge"

    def test_iptc_copies_missing_only(self, source_records):
        dst = {"Iptc.Application2.City": "Paris"}
        added = copy_iptc(source_records.iptc, dst)
        assert dst["Iptc.Application2.City"] == "Paris"
        assert dst["Iptc.Application2.Keywords"] == ["hdr", "landscape"]
        assert added == 1


class TestExifRules:
    """Forced keys, primary image flag and exclusions."""

    def test_forced_keys_overwrite(self, source_records):
        dst = {"Exif.Image.Make": "Unknown", "Exif.Image.Model": "Unknown"}
        copy_exif(source_records.exif, dst)
        assert dst["Exif.Image.Make"] == "Canon"
        assert dst["Exif.Image.Model"] == "Canon EOS 5D Mark IV"
        assert dst["Exif.Image.Artist"] == "Jane Doe"

    def test_primary_flag_forced(self, source_records):
        dst = {PRIMARY_IMAGE_KEY: 1}
        copy_exif(source_records.exif, dst)
        assert dst[PRIMARY_IMAGE_KEY] == PRIMARY_IMAGE == 0

    def test_generic_copy(self, source_records):
        dst = {"Exif.Photo.FNumber": 5.6}
        copy_exif(source_records.exif, dst)
        assert dst["Exif.Photo.ExposureTime"] == 0.01
        assert dst["Exif.Photo.FNumber"] == 5.6
        assert dst["Exif.Canon.ModelID"] == 2147484293

    def test_excluded_keys_not_copied(self, source_records):
        dst = {}
        copy_exif(source_records.exif, dst)
        assert "Exif.Thumbnail.JPEGInterchangeFormat" not in dst
        assert "Exif.Pentax.PreviewOffset" not in dst

    @pytest.mark.parametrize("key", [
        "Exif.Thumbnail.Compression",
        "Exif.SubThumb1.ImageWidth",
        "Exif.Image.Orientation",
        "Exif.SubImage2.Compression",
    ])
    def test_group_prefix_never_reaches_destination(self, key):
        dst = {}
        copy_exif({key: 42}, dst)
        assert key not in dst

    def test_rules_are_extensible(self):
        rules = ExifRules(
            forced_keys=("Exif.Photo.LensModel",),
            excluded_keys=frozenset({"Exif.Photo.MakerNote"}),
            excluded_group_prefixes=("Thumb",),
        )
        dst = {"Exif.Photo.LensModel": "old"}
        copy_exif({"Exif.Photo.LensModel": "new", "Exif.Photo.MakerNote": b"x", "Exif.Image.Orientation": 6}, dst, rules)
        assert dst["Exif.Photo.LensModel"] == "new"
        assert "Exif.Photo.MakerNote" not in dst
        assert dst["Exif.Image.Orientation"] == 6

    def test_default_rules(self):
        assert DEFAULT_RULES.is_excluded("Exif.Olympus.ThumbnailImage")
        assert DEFAULT_RULES.is_excluded("Exif.SubImage1.NewSubfileType")
        assert not DEFAULT_RULES.is_excluded("Exif.Photo.ISOSpeedRatings")
        assert len(DEFAULT_RULES.forced_keys) == 8


class TestRecords:
    """MetadataRecords helpers."""

    def test_changes_from(self):
        original = MetadataRecords(exif={"Exif.Image.Make": "A", "Exif.Photo.FNumber": 8.0})
        fused = original.copy()
        fused.exif["Exif.Image.Make"] = "B"
        fused.xmp["Xmp.dc.creator"] = "me"
        changes = fused.changes_from(original)
        assert changes.exif == {"Exif.Image.Make": "B"}
        assert changes.xmp == {"Xmp.dc.creator": "me"}
        assert changes.iptc == {}
        assert len(changes) == 2

    def test_copy_is_independent(self):
        records = MetadataRecords(exif={"Exif.Image.Make": "A"})
        clone = records.copy()
        clone.exif["Exif.Image.Make"] = "B"
        assert records.exif["Exif.Image.Make"] == "A"


class TestTransfer:
    """ExifTransfer against an in-memory backend."""

    def test_full_transfer(self, tmp_path, memory_backend, source_records):
        backend = memory_backend(sources={SOURCE: source_records})
        dst_file = tmp_path / "out.dng"
        report = transfer(SOURCE, dst_file, b"DNG", backend)

        assert report.destination_read and report.source_read and report.written
        assert report.errors == []
        assert dst_file.read_bytes() == b"DNG"
        changes, path = backend.writes[0]
        assert path == str(dst_file)
        assert changes.exif[PRIMARY_IMAGE_KEY] == 0
        assert changes.exif["Exif.Image.Make"] == "Canon"
        assert changes.xmp["Xmp.dc.creator"] == "Jane Doe"
        assert report.iptc_added == 2

    def test_unreadable_source(self, tmp_path, memory_backend):
        backend = memory_backend()
        report = transfer("/missing.CR2", tmp_path / "out.dng", b"DNG", backend)

        assert not report.source_read
        assert report.written
        assert isinstance(report.errors[0], MetadataSourceUnreadable)
        changes, _ = backend.writes[0]
        assert changes.exif == {PRIMARY_IMAGE_KEY: PRIMARY_IMAGE}
        assert changes.xmp == {} and changes.iptc == {}

    def test_unreadable_destination_still_writes_image(self, tmp_path, memory_backend, source_records):
        backend = memory_backend(sources={SOURCE: source_records})
        backend.destination = None
        dst_file = tmp_path / "out.dng"
        report = transfer(SOURCE, dst_file, b"DNG", backend)

        assert not report.destination_read
        assert not report.written
        assert isinstance(report.errors[0], MetadataDestinationUnreadable)
        assert backend.reads == []
        assert dst_file.read_bytes() == b"DNG"

    def test_write_failure_keeps_primary_image(self, tmp_path, memory_backend, source_records):
        backend = memory_backend(sources={SOURCE: source_records}, fail_write=True)
        dst_file = tmp_path / "out.dng"
        t = ExifTransfer(SOURCE, dst_file, b"DNG", backend)
        report = t.copy_metadata()

        assert not report.written
        assert isinstance(report.errors[-1], MetadataWriteFailure)
        assert dst_file.read_bytes() == b"DNG"
        # in-memory fusion is not rolled back
        assert t.dst.exif["Exif.Image.Make"] == "Canon"

    def test_second_transfer_changes_nothing(self, tmp_path, memory_backend, source_records):
        backend = memory_backend(sources={SOURCE: source_records})
        first = ExifTransfer(SOURCE, tmp_path / "a.dng", b"DNG", backend)
        first.copy_metadata()

        backend.destination = first.dst
        second = ExifTransfer(SOURCE, tmp_path / "b.dng", b"DNG", backend)
        report = second.copy_metadata()

        changes, _ = backend.writes[-1]
        assert len(changes) == 0
        assert second.dst == first.dst
        assert report.xmp_added == report.iptc_added == report.exif_added == 0


class TestExifToolKeys:
    """Translation between exiftool group names and dotted keys."""

    @pytest.mark.parametrize("key, expected", [
        ("EXIF:IFD0:Make", ("exif", "Exif.Image.Make")),
        ("EXIF:IFD1:Compression", ("exif", "Exif.Thumbnail.Compression")),
        ("EXIF:ExifIFD:ExposureTime", ("exif", "Exif.Photo.ExposureTime")),
        ("EXIF:GPS:GPSLatitude", ("exif", "Exif.GPSInfo.GPSLatitude")),
        ("EXIF:SubIFD:NewSubfileType", ("exif", "Exif.SubImage1.NewSubfileType")),
        ("EXIF:SubIFD2:Compression", ("exif", "Exif.SubImage3.Compression")),
        ("MakerNotes:Canon:ModelID", ("exif", "Exif.Canon.ModelID")),
        ("XMP:XMP-dc:Creator", ("xmp", "Xmp.dc.Creator")),
        ("IPTC:IPTC:Keywords", ("iptc", "Iptc.Application2.Keywords")),
        ("File:System:FileSize", None),
        ("Composite:Composite:ImageSize", None),
        ("SourceFile", None),
    ])
    def test_from_exiftool_key(self, key, expected):
        assert from_exiftool_key(key) == expected

    @pytest.mark.parametrize("key, expected", [
        ("Exif.Image.Make", "IFD0:Make"),
        ("Exif.Photo.FNumber", "ExifIFD:FNumber"),
        ("Exif.SubImage1.NewSubfileType", "SubIFD:NewSubfileType"),
        ("Exif.SubImage3.Compression", "SubIFD2:Compression"),
        ("Exif.Canon.ModelID", "Canon:ModelID"),
        ("Xmp.dc.Creator", "XMP-dc:Creator"),
        ("Iptc.Application2.Keywords", "IPTC:Keywords"),
    ])
    def test_to_exiftool_tag(self, key, expected):
        assert to_exiftool_tag(key) == expected

    def test_records_from_exiftool(self):
        block = {
            "SourceFile": "/raw/a.CR2",
            "EXIF:IFD0:Make": "Canon",
            "XMP:XMP-dc:Creator": "me",
            "IPTC:IPTC:City": "Lyon",
            "File:System:FileSize": 123,
        }
        records = records_from_exiftool(block)
        assert records.exif == {"Exif.Image.Make": "Canon"}
        assert records.xmp == {"Xmp.dc.Creator": "me"}
        assert records.iptc == {"Iptc.Application2.City": "Lyon"}


class TestExifToolBackend:
    """Backend I/O with the exiftool process mocked."""

    def test_read_file(self):
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            et = helper.return_value.__enter__.return_value
            et.get_metadata.return_value = [{"SourceFile": SOURCE, "EXIF:IFD0:Model": "X"}]
            records = ExifToolBackend().read_file(SOURCE)
        assert records.exif == {"Exif.Image.Model": "X"}
        et.get_metadata.assert_called_once_with(SOURCE)

    def test_read_file_failure(self):
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            helper.return_value.__enter__.return_value.get_metadata.side_effect = OSError("no exiftool")
            with pytest.raises(MetadataSourceUnreadable):
                ExifToolBackend().read_file(SOURCE)

    def test_read_bytes_failure(self):
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            helper.return_value.__enter__.return_value.get_metadata.return_value = []
            with pytest.raises(MetadataDestinationUnreadable):
                ExifToolBackend().read_bytes(b"not a tiff")

    def test_write_without_changes_skips_exiftool(self, tmp_path):
        dst = tmp_path / "out.dng"
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            ExifToolBackend().write(b"DNG", MetadataRecords(), dst)
        helper.assert_not_called()
        assert dst.read_bytes() == b"DNG"
        assert not (tmp_path / "out.dng.part").exists()

    def test_write_changes(self, tmp_path):
        dst = tmp_path / "out.dng"
        seen = {}

        def execute(*args):
            json_arg = next(a for a in args if a.startswith("-json="))
            with open(json_arg[len("-json="):]) as f:
                seen["tags"] = json.load(f)[0]
            seen["args"] = args

        changes = MetadataRecords(exif={
            "Exif.Image.Make": "Canon",
            "Exif.Image.DNGPrivateData": b"\x01\x02",
            PRIMARY_IMAGE_KEY: 0,
        })
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            helper.return_value.__enter__.return_value.execute.side_effect = execute
            ExifToolBackend().write(b"DNG", changes, dst)

        assert seen["tags"]["IFD0:Make"] == "Canon"
        assert seen["tags"]["SubIFD:NewSubfileType"] == 0
        assert seen["tags"]["IFD0:DNGPrivateData"] == "base64:AQI="
        assert "-overwrite_original" in seen["args"]
        assert dst.read_bytes() == b"DNG"

    def test_write_failure(self, tmp_path):
        dst = tmp_path / "out.dng"
        changes = MetadataRecords(exif={"Exif.Image.Make": "Canon"})
        with patch("hdrmerge.exif.ExifToolHelper") as helper:
            helper.return_value.__enter__.return_value.execute.side_effect = OSError("exiftool died")
            with pytest.raises(MetadataWriteFailure):
                ExifToolBackend().write(b"DNG", changes, dst)
        assert not dst.exists()
        assert not (tmp_path / "out.dng.part").exists()
