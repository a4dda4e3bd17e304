"""
Positional view over the input file names of a batch.

Names are sorted lexicographically by full path so that output name
templates are stable regardless of the order files were given in.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import os
from typing import Iterable


class FileNameManipulator:
    """
    Sorted, immutable index of input file names.

    Negative indices count from the end (-1 is the last name). Any index
    outside the list after that adjustment yields an empty string.

    Example
    -------
    >>> fnm = FileNameManipulator(["/a/IMG_0012.CR2", "/a/IMG_0005.CR2"])
    >>> fnm.get_input_base_name(0)
    'IMG_0005.CR2'
    >>> fnm.get_input_number_suffix(-1)
    '0012'
    """

    def __init__(self, file_names: Iterable[str]):
        self._names = tuple(sorted(str(name) for name in file_names))

    def __len__(self) -> int:
        return len(self._names)

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def _adjust_index(self, i: int) -> int | None:
        if i < 0:
            i = len(self._names) + i
        if i < 0 or i >= len(self._names):
            return None
        return i

    def get_input_base_name(self, i: int) -> str:
        i = self._adjust_index(i)
        if i is None:
            return ""
        return self.get_base_name(self._names[i])

    def get_input_base_name_no_ext(self, i: int) -> str:
        name = self.get_input_base_name(i)
        dot = name.rfind(".")
        return name if dot < 0 else name[:dot]

    def get_input_dir_name(self, i: int) -> str:
        i = self._adjust_index(i)
        if i is None:
            return ""
        return self.get_dir_name(self._names[i])

    def get_input_number_suffix(self, i: int) -> str:
        """Maximal run of ASCII digits ending the extension-less base name."""
        name = self.get_input_base_name_no_ext(i)
        pos = len(name)
        while pos > 0 and "0" <= name[pos - 1] <= "9":
            pos -= 1
        return name[pos:]

    @staticmethod
    def get_base_name(name: str) -> str:
        return os.path.basename(name)

    @staticmethod
    def get_dir_name(name: str) -> str:
        """Absolute directory containing ``name`` (symlinks are not resolved)."""
        return os.path.dirname(os.path.abspath(name))
