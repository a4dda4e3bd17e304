"""
Output path templates.

A pattern is scanned left to right for tokens; each match is replaced and
scanning resumes right after the inserted text, so replacement text is
never scanned again.

Tokens
------
%if[n]  base file name of input n
%iF[n]  base file name of input n without extension
%id[n]  directory of input n
%in[n]  numerical suffix of input n (IMG_1234.CR2 -> 1234)
%of     base file name of the output file (only with an output name)
%od     directory of the output file (only with an output name)
%%      a literal %

Inputs are sorted lexicographically; n may be negative (-1 is the last).

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from .filenames import FileNameManipulator

logger = logging.getLogger(__name__)

DNG_SUFFIX = ".dng"

SINGLE_IMAGE_PATTERN = "%id[-1]/%iF[0].dng"
MULTI_IMAGE_PATTERN = "%id[-1]/%iF[0]-%in[-1].dng"

_INPUT_TOKENS = r"i[fFdn]\[(-?[0-9]+)\]"
_INPUT_RE = re.compile(rf"%(?:{_INPUT_TOKENS}|%)")
_INPUT_OUTPUT_RE = re.compile(rf"%(?:o[fd]|{_INPUT_TOKENS}|%)")


def replace_arguments(
    pattern: str,
    file_names: Iterable[str],
    out_file_name: str = "",
) -> str:
    """
    Resolve the tokens of an output path pattern.

    Parameters
    ----------
    pattern : str
        Pattern with %-tokens.
    file_names : iterable of str
        Input file names of the batch (any order).
    out_file_name : str, default ""
        Output file name. %of and %od are only recognized when given;
        otherwise they are left verbatim.

    Returns
    -------
    str
        Resolved path. Unrecognized %-sequences are kept as they are.
    """
    regex = _INPUT_OUTPUT_RE if out_file_name else _INPUT_RE
    fnm = FileNameManipulator(file_names)
    pieces: list[str] = []
    offset = 0
    for match in regex.finditer(pattern):
        pieces.append(pattern[offset:match.start()])
        pieces.append(_replacement(match, fnm, out_file_name))
        offset = match.end()
    pieces.append(pattern[offset:])
    result = "".join(pieces)
    logger.debug("Resolved pattern %r -> %r", pattern, result)
    return result


def _replacement(match: re.Match, fnm: FileNameManipulator, out_file_name: str) -> str:
    token = match.group(0)
    if token[1] == "%":
        return "%"
    if token[1] == "o":
        if token[2] == "f":
            return fnm.get_base_name(out_file_name)
        return fnm.get_dir_name(out_file_name)

    index = int(match.group(1))
    kind = token[2]
    if kind == "f":
        return fnm.get_input_base_name(index)
    elif kind == "F":
        return fnm.get_input_base_name_no_ext(index)
    elif kind == "d":
        return fnm.get_input_dir_name(index)
    return fnm.get_input_number_suffix(index)


def build_output_file_name(file_names: list[str]) -> str:
    """Default output name: directory of the last input, name of the first."""
    pattern = MULTI_IMAGE_PATTERN if len(file_names) > 1 else SINGLE_IMAGE_PATTERN
    return replace_arguments(pattern, file_names)


def resolve_output_file_name(pattern: str, file_names: list[str]) -> str:
    """
    Output name for a batch: the resolved user pattern, or the default.

    A resolved user pattern that does not end in '.dng' (case-sensitive)
    gets the suffix appended.
    """
    if not pattern:
        return build_output_file_name(file_names)
    name = replace_arguments(pattern, file_names)
    if not name.endswith(DNG_SUFFIX):
        name += DNG_SUFFIX
    return name
