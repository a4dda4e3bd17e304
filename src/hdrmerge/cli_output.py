"""
Console output for the hdrmerge command line.

Coloured status lines (colorama) and a tqdm bar fed by the load and save
progress reports. The library itself never prints; only cli.py uses this
module.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from typing import TextIO

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from .progress import format_message

colorama_init(autoreset=True)


class Colors:
    """Styles of the console messages."""

    TITLE = Fore.CYAN + Style.BRIGHT
    OK = Fore.GREEN + Style.BRIGHT
    WARN = Fore.YELLOW
    FAIL = Fore.RED + Style.BRIGHT
    TEXT = Fore.WHITE
    LABEL = Fore.MAGENTA
    VALUE = Fore.YELLOW + Style.BRIGHT
    PATH = Fore.CYAN
    BAR = Fore.GREEN
    RESET = Style.RESET_ALL


class Symbols:
    """Unicode symbols for status indicators."""
    CHECK = "\u2714"  # ✔
    CROSS = "\u2718"  # ✘
    BULLET = "\u2022"  # •
    CAMERA = "\U0001F4F7"  # 📷
    FILE = "\U0001F4C4"    # 📄

    @classmethod
    def use_ascii(cls):
        """Switch to ASCII-only fallbacks."""
        cls.CHECK = "[OK]"
        cls.CROSS = "[X]"
        cls.BULLET = "*"
        cls.CAMERA = "[C]"
        cls.FILE = "[F]"


BANNER_WIDTH = 62

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def _emit(style: str, text: str, stream: TextIO | None = None) -> None:
    print(f"{style}{text}{Colors.RESET}", file=stream or sys.stdout)


def print_banner(version: str) -> None:
    """Print the startup banner."""
    rows = [
        f"{Symbols.CAMERA}  HDRMerge",
        "   Bracketed raw exposures to floating point DNG",
        f"   Version {version}",
    ]
    edge = "=" * BANNER_WIDTH
    body = "\n".join(f"  {row}" for row in rows)
    _emit(Colors.TITLE, f"\n{edge}\n{body}\n{edge}\n")


def print_header(text: str, width: int = 60) -> None:
    rule = "-" * width
    _emit(Colors.TITLE, f"\n{rule}\n  {text}\n{rule}")


def print_success(text: str) -> None:
    _emit(Colors.OK, f"{Symbols.CHECK} {text}")


def print_warning(text: str) -> None:
    _emit(Colors.WARN, f"! {text}")


def print_error(text: str) -> None:
    """Errors go to stderr."""
    _emit(Colors.FAIL, f"{Symbols.CROSS} {text}", sys.stderr)


def print_info(text: str) -> None:
    _emit(Colors.TEXT, f"{Symbols.BULLET} {text}")


def print_metric(name: str, value: str | int | float, unit: str = "") -> None:
    suffix = f" {unit}" if unit else ""
    print(f"  {Colors.LABEL}{name}: {Colors.VALUE}{value}{Colors.RESET}{suffix}")


def print_path(label: str, path: str) -> None:
    print(f"  {Colors.TEXT}{label}: {Colors.PATH}{Symbols.FILE} {path}{Colors.RESET}")


def format_bytes(n_bytes: int) -> str:
    """Human readable size, e.g. 2048 -> '2.0 KB'."""
    size = float(n_bytes)
    unit = 0
    while size >= 1024 and unit < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {_BYTE_UNITS[unit]}"


@dataclass
class ProgressConfig:
    """Appearance of the console progress bar."""

    bar_format: str = "{desc:<32.32} {bar}| {n_fmt:>3}% [{elapsed}]"
    ncols: int = 80
    colour: str = "green"
    leave: bool = False


class ConsoleProgress:
    """
    Progress sink drawing a 0-100 tqdm bar.

    The bar description shows the current stage message, with file
    arguments shortened to their base name. Reports never move the bar
    backwards.

    Example
    -------
    >>> with ConsoleProgress() as progress:
    ...     io.load(options, progress)
    """

    def __init__(self, config: ProgressConfig | None = None, disable: bool = False):
        config = config or ProgressConfig()
        self.bar = tqdm(
            total=100,
            desc=f"{Colors.BAR}hdrmerge{Colors.RESET}",
            bar_format=config.bar_format,
            ncols=config.ncols,
            colour=config.colour,
            leave=config.leave,
            disable=disable,
        )
        self.percent = 0

    def advance(self, percent: int, message: str, arg: str | None = None) -> None:
        percent = min(max(percent, self.percent), 100)
        self.bar.set_description_str(format_message(message, arg if arg is None else os.path.basename(arg)))
        self.bar.update(percent - self.percent)
        self.percent = percent

    def close(self) -> None:
        self.bar.close()

    def __enter__(self) -> ConsoleProgress:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def supports_color(stream: TextIO | None = None) -> bool:
    """False for pipes, dumb terminals and when NO_COLOR is set."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR") or os.environ.get("TERM") == "dumb":
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def supports_unicode(stream: TextIO | None = None) -> bool:
    if os.environ.get("TERM") == "dumb":
        return False
    encoding = (getattr(stream or sys.stdout, "encoding", None) or "").lower()
    return "utf" in encoding or "utf" in os.environ.get("LANG", "").lower()


def setup_terminal() -> dict:
    """
    Adapt the console output to the terminal.

    Returns
    -------
    dict
        Detected 'unicode', 'color' and 'width'.
    """
    caps = {
        "unicode": supports_unicode(),
        "color": supports_color(),
        "width": shutil.get_terminal_size().columns,
    }
    if not caps["unicode"]:
        Symbols.use_ascii()
    return caps
