"""
Configuration dataclasses for the hdrmerge pipeline.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

VALID_BPS = (16, 24, 32)

PREVIEW_SIZES = {"none": 0, "half": 1, "full": 2}


@dataclass
class LoadOptions:
    """
    Options controlling how a set of raw files is loaded into the stack.

    All parameters are explicitly documented and have sensible defaults.
    """

    # --- Inputs ---
    file_names: list[str] = field(default_factory=list)
    """Ordered input raw file paths."""

    # --- White level ---
    use_custom_wl: bool = False
    """Clamp the decoded white level to custom_wl."""

    custom_wl: int = 16383
    """User white level ceiling. Never raises the decoded white level."""

    # --- Geometry ---
    align: bool = True
    """Align exposures before composing."""

    crop: bool = True
    """Crop the result to the area covered by every aligned exposure."""

    # --- Batch mode ---
    batch: bool = False
    """Group inputs into bracketed sets by capture time."""

    batch_gap: float = 2.0
    """Maximum gap in seconds between two images of the same set."""

    with_singles: bool = False
    """Also merge sets made of a single image."""

    # --- Parallelism ---
    workers: int | None = 1
    """Decoding threads. Insertion into the stack is always sequential."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.custom_wl <= 0:
            raise ValueError(f"custom_wl must be positive, got {self.custom_wl}")
        if self.batch_gap < 0:
            raise ValueError(f"batch_gap must be >= 0, got {self.batch_gap}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    def for_files(self, file_names: list[str]) -> LoadOptions:
        """Return a copy of these options restricted to ``file_names``."""
        return replace(self, file_names=list(file_names))


@dataclass
class SaveOptions:
    """Options controlling how the merged image is written."""

    bps: Literal[16, 24, 32] = 16
    """Bits per sample of the floating point output."""

    feather_radius: int = 3
    """Mask blur radius, softens transitions between exposures."""

    preview_size: int = 2
    """Embedded preview size: 0 = none, 1 = half, 2 = full."""

    save_mask: bool = False
    """Also write the exposure mask as a PNG."""

    mask_file_name: str = ""
    """Mask output pattern. Accepts the output tokens %of and %od."""

    file_name: str = ""
    """Output file pattern. Empty means the automatic name."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.bps not in VALID_BPS:
            raise ValueError(f"bps must be one of {VALID_BPS}, got {self.bps}")
        if self.feather_radius < 0:
            raise ValueError(f"feather_radius must be >= 0, got {self.feather_radius}")
        if self.preview_size not in PREVIEW_SIZES.values():
            raise ValueError(f"preview_size must be 0, 1 or 2, got {self.preview_size}")
        if self.save_mask and not self.mask_file_name:
            raise ValueError("save_mask requires mask_file_name")
