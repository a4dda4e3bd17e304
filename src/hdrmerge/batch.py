"""
Automatic bracketing: split a list of raw files into sets shot in a row.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging

from .config import LoadOptions
from .io import RawDecoder
from .params import DateInterval

logger = logging.getLogger(__name__)


def get_bracketed_sets(options: LoadOptions, decoder=None) -> list[LoadOptions]:
    """
    Group the input files into bracketed sets by capture time.

    Files without a capture time form a set on their own and come first.
    The others are sorted by capture interval; a new set starts whenever
    the gap between the end of the previous exposure and the start of the
    next one exceeds ``options.batch_gap`` seconds.

    Parameters
    ----------
    options : LoadOptions
        General options; each set is a copy restricted to its files.
    decoder : RawDecoder, optional
        Provides get_creation_interval().

    Returns
    -------
    list[LoadOptions]
        One entry per set, including single-image sets. Skipping them is
        the caller's decision (see ``options.with_singles``).
    """
    decoder = decoder if decoder is not None else RawDecoder()
    result: list[LoadOptions] = []
    dated: list[tuple[DateInterval, str]] = []
    for name in options.file_names:
        interval = decoder.get_creation_interval(name)
        if interval is None:
            logger.debug("No capture time in %s, processing it alone", name)
            result.append(options.for_files([name]))
        else:
            dated.append((interval, name))

    dated.sort()
    last: DateInterval | None = None
    for interval, name in dated:
        if last is None or last.difference(interval) > options.batch_gap:
            result.append(options.for_files([]))
        result[-1].file_names.append(name)
        last = interval

    for num, set_options in enumerate(result):
        logger.info("Set %d: %s", num, " ".join(set_options.file_names))
    return result
