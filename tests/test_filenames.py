"""
Tests for the filename index.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import os

import pytest

from hdrmerge.filenames import FileNameManipulator


class TestSorting:
    """Names are sorted by full path, whatever the input order."""

    def test_sorted_copy(self):
        names = ["/a/IMG_0012.CR2", "/a/IMG_0005.CR2", "/b/IMG_0001.CR2"]
        fnm = FileNameManipulator(names)
        assert fnm.names == ("/a/IMG_0005.CR2", "/a/IMG_0012.CR2", "/b/IMG_0001.CR2")
        assert names[0] == "/a/IMG_0012.CR2"  # input untouched
        assert len(fnm) == 3

    def test_accepts_generators(self):
        fnm = FileNameManipulator(name for name in ["z.NEF", "a.NEF"])
        assert fnm.get_input_base_name(0) == "a.NEF"


class TestIndexing:
    """Negative and out-of-range indices."""

    @pytest.fixture
    def fnm(self):
        return FileNameManipulator(["/a/IMG_0012.CR2", "/a/IMG_0005.CR2"])

    def test_positive_index(self, fnm):
        assert fnm.get_input_base_name(0) == "IMG_0005.CR2"
        assert fnm.get_input_base_name(1) == "IMG_0012.CR2"

    def test_negative_index(self, fnm):
        assert fnm.get_input_base_name(-1) == "IMG_0012.CR2"
        assert fnm.get_input_base_name(-2) == "IMG_0005.CR2"

    @pytest.mark.parametrize("index", [2, 10, -3, -100])
    def test_out_of_range_yields_empty(self, fnm, index):
        assert fnm.get_input_base_name(index) == ""
        assert fnm.get_input_base_name_no_ext(index) == ""
        assert fnm.get_input_dir_name(index) == ""
        assert fnm.get_input_number_suffix(index) == ""

    def test_empty_index(self):
        fnm = FileNameManipulator([])
        assert fnm.get_input_base_name(0) == ""
        assert fnm.get_input_base_name(-1) == ""


class TestQueries:
    """Base name, extension stripping, directory and numeric suffix."""

    @pytest.mark.parametrize("name, expected", [
        ("/a/IMG_0005.CR2", "IMG_0005"),
        ("/a/archive.tar.gz", "archive.tar"),
        ("/a/README", "README"),
        ("/a/.hidden", ""),
    ])
    def test_base_name_no_ext(self, name, expected):
        assert FileNameManipulator([name]).get_input_base_name_no_ext(0) == expected

    @pytest.mark.parametrize("name, expected", [
        ("/a/IMG_1234.CR2", "1234"),
        ("/a/DSC01.ARW", "01"),
        ("/a/IMG.CR2", ""),
        ("/a/2024.NEF", "2024"),
        ("/a/IMG_12a.CR2", ""),
        ("/a/IMG_0012", "0012"),
    ])
    def test_number_suffix(self, name, expected):
        assert FileNameManipulator([name]).get_input_number_suffix(0) == expected

    def test_absolute_dir_name(self):
        fnm = FileNameManipulator(["/data/shoot/IMG_0001.CR2"])
        assert fnm.get_input_dir_name(0) == os.path.dirname(os.path.abspath("/data/shoot/IMG_0001.CR2"))

    def test_relative_dir_name_is_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        fnm = FileNameManipulator(["shoot/IMG_0001.CR2"])
        assert fnm.get_input_dir_name(0) == os.path.join(os.getcwd(), "shoot")

    def test_static_helpers(self):
        assert FileNameManipulator.get_base_name("/x/y/out.dng") == "out.dng"
        assert FileNameManipulator.get_dir_name("/x/y/out.dng") == os.path.abspath("/x/y")
