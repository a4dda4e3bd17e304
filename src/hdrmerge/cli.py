"""
Command-line interface for hdrmerge.

Usage:
    python -m hdrmerge merge [options] RAW_FILES...
    hdrmerge merge [options] RAW_FILES...
    hdrmerge sets [-g gap] RAW_FILES...

Output and mask file names accept the following tokens:

    %if[n]  base file name of image n (inputs sorted lexicographically,
            n = -1 is the last image, -2 the previous one, and so on)
    %iF[n]  base file name of image n without the extension
    %id[n]  directory name of image n
    %in[n]  numerical suffix of image n (IMG_1234.CR2 -> 1234)
    %%      a single %

Mask file names also accept %of and %od, the base name and directory of
the output file.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import replace

from .batch import get_bracketed_sets
from .cli_output import (
    ConsoleProgress,
    format_bytes,
    print_banner,
    print_error,
    print_header,
    print_info,
    print_metric,
    print_path,
    print_success,
    print_warning,
    setup_terminal,
)
from .config import PREVIEW_SIZES, VALID_BPS, LoadOptions, SaveOptions
from .errors import HdrMergeError
from .image_io import ImageIO
from .io import RawDecoder
from .template import resolve_output_file_name
from .utils import format_duration, get_platform_info, get_version, get_version_banner

logger = logging.getLogger(__name__)


def setup_logging(verbosity: int = 0) -> None:
    """Configure logging for CLI: WARNING by default, -v INFO, -vv DEBUG."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "files",
        nargs="+",
        metavar="RAW_FILES",
        help="The input raw files",
    )
    parser.add_argument(
        "-g",
        type=float,
        default=2.0,
        dest="batch_gap",
        metavar="GAP",
        help="Batch gap, maximum difference in seconds between two images of the same set (default: 2)",
    )
    parser.add_argument(
        "-v",
        action="count",
        default=0,
        dest="verbose",
        help="Verbose mode (-vv for debug)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="hdrmerge",
        description="Merge raw exposures into an HDR floating point DNG",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hdrmerge {get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Merge command
    merge_parser = subparsers.add_parser(
        "merge",
        help="Merge RAW_FILES into an HDR DNG raw image",
    )
    _add_common_arguments(merge_parser)
    naming = merge_parser.add_mutually_exclusive_group()
    naming.add_argument(
        "-o",
        type=str,
        default="",
        dest="output",
        metavar="OUT_FILE",
        help="Output file name; '.dng' is appended when missing",
    )
    naming.add_argument(
        "-a",
        action="store_true",
        dest="automatic",
        help="Name the output %%id[-1]/%%iF[0]-%%in[-1].dng (the default without -o)",
    )
    merge_parser.add_argument(
        "-B", "--batch",
        action="store_true",
        help="Group the inputs into bracketed sets by comparing their creation time",
    )
    merge_parser.add_argument(
        "--single",
        action="store_true",
        dest="with_singles",
        help="Also merge single images (skipped by default)",
    )
    merge_parser.add_argument(
        "-b",
        type=int,
        choices=VALID_BPS,
        default=16,
        dest="bps",
        help="Bits per sample (default: 16)",
    )
    merge_parser.add_argument(
        "--no-align",
        action="store_true",
        help="Do not auto-align source images",
    )
    merge_parser.add_argument(
        "--no-crop",
        action="store_true",
        help="Do not crop the output image to the optimum size",
    )
    merge_parser.add_argument(
        "-m",
        type=str,
        default="",
        dest="mask",
        metavar="MASK_FILE",
        help="Save the mask to MASK_FILE as a PNG image (accepts %%of and %%od)",
    )
    merge_parser.add_argument(
        "-r",
        type=int,
        default=3,
        dest="radius",
        help="Mask blur radius, to soften transitions between images (default: 3)",
    )
    merge_parser.add_argument(
        "-p",
        type=str,
        choices=list(PREVIEW_SIZES),
        default="full",
        dest="preview",
        help="Preview size (default: full)",
    )
    merge_parser.add_argument(
        "-w",
        type=int,
        default=None,
        dest="white_level",
        metavar="WHITELEVEL",
        help="Use a custom white level (never above the decoded one)",
    )
    merge_parser.add_argument(
        "-j", "--workers",
        type=int,
        default=1,
        help="Decoding threads (default: 1)",
    )
    merge_parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress colored output (use logging only)",
    )

    # Sets command
    sets_parser = subparsers.add_parser(
        "sets",
        help="Print the bracketed sets found among RAW_FILES",
    )
    _add_common_arguments(sets_parser)

    return parser


def load_options_from_args(args: argparse.Namespace) -> LoadOptions:
    return LoadOptions(
        file_names=list(args.files),
        use_custom_wl=args.white_level is not None,
        custom_wl=args.white_level if args.white_level is not None else 16383,
        align=not args.no_align,
        crop=not args.no_crop,
        batch=args.batch,
        batch_gap=args.batch_gap,
        with_singles=args.with_singles,
        workers=args.workers,
    )


def save_options_from_args(args: argparse.Namespace) -> SaveOptions:
    return SaveOptions(
        bps=args.bps,
        feather_radius=args.radius,
        preview_size=PREVIEW_SIZES[args.preview],
        save_mask=bool(args.mask),
        mask_file_name=args.mask,
        file_name="" if args.automatic else args.output,
    )


def automatic_merge(
    load_options: LoadOptions,
    save_options: SaveOptions,
    io: ImageIO | None = None,
    quiet: bool = False,
) -> int:
    """
    Merge every set of input files.

    Returns
    -------
    int
        Exit status: 0 when every set was merged, 1 otherwise.
    """
    io = io if io is not None else ImageIO()
    if load_options.batch:
        sets = get_bracketed_sets(load_options, io.decoder)
    else:
        sets = [load_options]

    status = 0
    for options in sets:
        if not options.with_singles and len(options.file_names) == 1:
            if not quiet:
                print_info(f"Skipping single image {options.file_names[0]}")
            continue

        start = time.time()
        with ConsoleProgress(disable=quiet) as progress:
            result = io.load(options, progress)
        if not result.ok:
            name = result.error.file_name
            if len(options.file_names) == 1:
                name = f"{name} (frame {result.failed_index})"
            if result.error.format_error:
                print_error(f"Error loading {name}, it has a different format.")
            else:
                print_error(f"Error loading {name}, file not found.")
            status = 1
            continue
        if result.no_usable_frames:
            print_error(f"No usable frames in {options.file_names[0]}")
            status = 1
            continue

        file_name = resolve_output_file_name(save_options.file_name, [p.file_name for p in io.raw_parameters])
        set_save = replace(save_options, file_name=file_name)
        if not quiet:
            print_info(f"Writing result to {set_save.file_name}")
        with ConsoleProgress(disable=quiet) as progress:
            report = io.save(set_save, progress)

        if report.errors:
            print_warning(f"Metadata incomplete in {set_save.file_name}")
        if not quiet:
            if os.path.exists(set_save.file_name):
                print_metric("Size", format_bytes(os.path.getsize(set_save.file_name)))
            print_metric("Dynamic range gain", f"{io.stack.get_max_exposure():.1f}", "EV")
            print_success(f"Merged {len(io.stack)} images in {format_duration(time.time() - start)}")
    return status


def list_sets(args: argparse.Namespace) -> int:
    options = LoadOptions(file_names=list(args.files), batch=True, batch_gap=args.batch_gap)
    sets = get_bracketed_sets(options, RawDecoder())
    print_header(f"{len(sets)} bracketed sets")
    for num, set_options in enumerate(sets):
        print_info(f"Set {num}:")
        for name in set_options.file_names:
            print_path("File", name)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    logger.debug(get_version_banner())
    logger.debug(get_platform_info())

    if args.command == "sets":
        return list_sets(args)

    if args.command == "merge":
        quiet = args.quiet
        if not quiet:
            setup_terminal()
            print_banner(get_version())
        try:
            load_options = load_options_from_args(args)
            save_options = save_options_from_args(args)
            load_options.validate()
            save_options.validate()
        except ValueError as e:
            print_error(str(e))
            return 2
        try:
            return automatic_merge(load_options, save_options, quiet=quiet)
        except HdrMergeError as e:
            print_error(f"Merge failed: {e}")
            logger.exception("Merge failed: %s", e)
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
