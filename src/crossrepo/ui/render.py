"""Output rendering for the crossrepo CLI.

Purpose
- Plain-text per-repo summaries with optional ANSI status markers.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

_GREEN = "\033[32m"
_RED = "\033[31m"
_YELLOW = "\033[33m"
_RESET = "\033[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    if no_color_flag or os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer writing deterministic lines to ``stream``."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)

    def kv(self, key: str, value: object) -> None:
        self._write(f"{key}: {value}")

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._write(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._write(f"  {prefix}{entry}")

    def ok(self, label: str) -> None:
        self._write(f"  {self._paint('OK', _GREEN)}    {label}")

    def fail(self, label: str) -> None:
        self._write(f"  {self._paint('FAIL', _RED)}  {label}")

    def skip(self, label: str) -> None:
        self._write(f"  {self._paint('SKIP', _YELLOW)}  {label}")

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self._color else text

    def _write(self, line: str) -> None:
        print(line, file=self._stream)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
