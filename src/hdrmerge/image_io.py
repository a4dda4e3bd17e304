"""
Ingestion orchestrator: load a bracketed set into the exposure stack and
save the merged result.

ImageIO owns the exposure stack and the descriptors of its exposures.
Descriptors live in an arena addressed by a stable key; every Image in the
stack carries its key, so the ordered descriptor list is derived from the
stack order instead of being kept in sync by hand.

Loading is all or nothing: the first exposure that cannot be decoded or
does not match the format of the stack discards the whole set.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import copy
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, Protocol

import imageio.v3 as iio
import numpy as np

from .config import LoadOptions, SaveOptions
from .dng import DngFloatWriter, render_preview
from .errors import DecodeFailed, FormatMismatch, HdrMergeError, LoadError
from .exif import MetadataBackend, TransferReport
from .filenames import FileNameManipulator
from .io import MAX_FRAMES, RawDecoder
from .params import DateInterval, RawParameters
from .progress import NullProgress, ProgressIndicator
from .stack import ExposureStack, Image
from .template import build_output_file_name, replace_arguments
from .utils import timer

logger = logging.getLogger(__name__)


class Decoder(Protocol):
    def load_raw_image(self, file_name: str, shot_select: int = 0) -> tuple[Image | None, RawParameters]:
        ...

    def get_frame_count(self, file_name: str) -> int:
        ...

    def get_creation_interval(self, file_name: str) -> DateInterval | None:
        ...


@dataclass
class LoadResult:
    """
    Outcome of ImageIO.load().

    ``code`` is the compact form used by command line callers: for a set
    of n files, ``code >= 2n`` means success; otherwise ``code >> 1`` is
    the index of the failing file and ``code & 1`` is 1 for a format
    mismatch, 0 for a decode failure.

    n counts files, not frames: when a single multi-frame file fails on
    frame k, ``code`` is ``(k << 1) + format_bit`` and may still reach 2.
    ``ok`` and ``error`` are the reliable signals in that case.
    """

    code: int
    num_images: int = 0
    error: LoadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def no_usable_frames(self) -> bool:
        """Successful load that produced no exposure at all."""
        return self.ok and self.num_images == 0

    @property
    def failed_index(self) -> int | None:
        return None if self.error is None else self.error.index

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class ImageIO:
    """
    Load raw exposures into an ExposureStack and write the merged DNG.

    Parameters
    ----------
    decoder : Decoder, optional
        Decoding backend. Defaults to RawDecoder (LibRaw).
    metadata_backend : MetadataBackend, optional
        Backend used to transfer metadata into the output. Defaults to
        exiftool.
    """

    def __init__(
        self,
        decoder: Decoder | None = None,
        metadata_backend: MetadataBackend | None = None,
    ):
        self.decoder = decoder if decoder is not None else RawDecoder()
        self.metadata_backend = metadata_backend
        self.stack = ExposureStack()
        self._descriptors: dict[int, RawParameters] = {}
        self._keys = itertools.count()

    # -------------------------------------------------------------------------
    # Descriptors
    # -------------------------------------------------------------------------

    @property
    def raw_parameters(self) -> list[RawParameters]:
        """Descriptors in stack order (most exposed first)."""
        return [self._descriptors[key] for key in self.stack.keys()]

    def clear(self) -> None:
        self.stack.clear()
        self._descriptors.clear()

    def get_input_path(self) -> str:
        """Directory of the first loaded exposure."""
        params = self.raw_parameters
        return FileNameManipulator.get_dir_name(params[0].file_name) if params else ""

    def replace_arguments(self, pattern: str, out_file_name: str = "") -> str:
        return replace_arguments(pattern, [p.file_name for p in self.raw_parameters], out_file_name)

    def build_output_file_name(self) -> str:
        return build_output_file_name([p.file_name for p in self.raw_parameters])

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, options: LoadOptions, progress: ProgressIndicator | None = None) -> LoadResult:
        """
        Load a set of exposures and prepare the stack for composing.

        A single input file is probed for frames: files holding 1 to
        MAX_FRAMES frames are split and merged as if each frame were a
        separate file. Any other frame count loads nothing and the result
        reports ``no_usable_frames``.

        Parameters
        ----------
        options : LoadOptions
            Input files and load flags.
        progress : ProgressIndicator, optional
            Receives (percent, message, arg) at each stage boundary.

        Returns
        -------
        LoadResult
            On failure the stack and descriptors are left empty and the
            error names the failing item.
        """
        options.validate()
        progress = progress or NullProgress()
        self.clear()

        names = list(options.file_names)
        if len(names) == 1:
            name = names[0]
            frame_count = self.decoder.get_frame_count(name)
            step = 100 // (frame_count + 1)
            if 0 < frame_count <= MAX_FRAMES:
                jobs = [(name, shot) for shot in range(frame_count)]
            else:
                logger.warning("%s holds %d frames, nothing to load", name, frame_count)
                jobs = []
        else:
            step = 100 // (len(names) + 1)
            jobs = [(name, 0) for name in names]

        p = 0
        with timer("Load files"):
            decoded = self._decode(jobs, options.workers)
            try:
                for i, (name, _) in enumerate(jobs):
                    progress.advance(p, "Loading {}", name)
                    p += step
                    image, params = next(decoded)
                    error = self._insert(i, name, image, params)
                    if error is not None:
                        self.clear()
                        logger.error("Load aborted: %s", error)
                        return LoadResult((error.index << 1) + int(error.format_error), 0, error)
            finally:
                decoded.close()

        if len(self.stack):
            self._process_stack(options, progress, p)
        progress.advance(100, "Done loading!")
        return LoadResult(len(names) << 1, len(self.stack))

    def _decode(
        self, jobs: list[tuple[str, int]], workers: int | None
    ) -> Iterator[tuple[Image | None, RawParameters]]:
        """Decode jobs in order; concurrently when workers allow it."""
        if len(jobs) > 1 and (workers is None or workers > 1):
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [pool.submit(self.decoder.load_raw_image, name, shot) for name, shot in jobs]
                try:
                    for future in futures:
                        yield future.result()
                finally:
                    for future in futures:
                        future.cancel()
        else:
            for name, shot in jobs:
                yield self.decoder.load_raw_image(name, shot)

    def _insert(self, index: int, name: str, image: Image | None, params: RawParameters) -> LoadError | None:
        if image is None or not image.good():
            return DecodeFailed(index, name, "cannot decode")
        if len(self.stack) and not params.is_same_format(self.raw_parameters[0]):
            return FormatMismatch(index, name, "different size or sensor layout")
        key = next(self._keys)
        self._descriptors[key] = params
        image.key = key
        self.stack.add_image(image)
        return None

    def _process_stack(self, options: LoadOptions, progress: ProgressIndicator, p: int) -> None:
        progress.advance(p, "Processing stack")
        params = self.raw_parameters[0]
        with timer("Process stack"):
            self.stack.set_flip(params.flip)
            if options.use_custom_wl:
                # Never raises the decoded white level
                for desc in self._descriptors.values():
                    desc.max = min(desc.max, options.custom_wl)
            self.stack.calculate_saturation_level(params, options.use_custom_wl)
            if options.align and params.can_align():
                self.stack.align()
                if options.crop:
                    self.stack.crop()
            self.stack.compute_response_functions()
            self.stack.generate_mask()

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    def save(self, options: SaveOptions, progress: ProgressIndicator | None = None) -> TransferReport:
        """
        Compose the stack and write it as a floating point DNG.

        The output inherits the metadata of the least exposed input.
        ``options.file_name`` is used as is; when empty, the default output
        name is built from the inputs.
        """
        if not len(self.stack):
            raise HdrMergeError("Nothing to save, the stack is empty")
        options.validate()
        progress = progress or NullProgress()
        file_name = options.file_name or self.build_output_file_name()
        width, height = self.stack.get_width(), self.stack.get_height()
        cropped = " cropped" if self.stack.is_cropped() else ""
        logger.info("Writing %s, %d-bit, %dx%d%s", file_name, options.bps, width, height, cropped)

        progress.advance(0, "Rendering image")
        params = copy.copy(self.raw_parameters[-1])
        params.width, params.height = width, height
        params.adjust_white(self.stack.get_image(len(self.stack) - 1).data)
        with timer("Compose"):
            composed = self.stack.compose(params, options.feather_radius)

        progress.advance(33, "Rendering preview")
        with timer("Render preview"):
            preview = render_preview(composed, params, self.stack.get_max_exposure(), options.preview_size <= 1)

        progress.advance(66, "Writing output")
        writer = DngFloatWriter(self.metadata_backend)
        writer.set_bits_per_sample(options.bps)
        writer.set_preview_width((options.preview_size * width) // 2)
        writer.set_preview(preview)
        report = writer.write(composed, params, file_name)
        progress.advance(100, "Done writing!")

        if options.save_mask:
            self.write_mask_image(self.replace_arguments(options.mask_file_name, file_name))
        return report

    def write_mask_image(self, mask_file: str) -> bool:
        """
        Write the exposure mask as an 8-bit grey PNG.

        Grey level of exposure c is 256*c/(n-1) and the least exposed one
        is white.

        Returns
        -------
        bool
            False when the image could not be written.
        """
        logger.debug("Saving mask to %s", mask_file)
        mask = self.stack.get_mask()
        num_colors = len(self.stack) - 1
        levels = [(256 * c) // num_colors for c in range(num_colors)] + [255]
        gray = np.asarray(levels, dtype=np.uint8)[mask]
        try:
            iio.imwrite(mask_file, gray, extension=".png")
        except (OSError, ValueError) as e:
            logger.error("Cannot save mask image to %s: %s", mask_file, e)
            return False
        return True
