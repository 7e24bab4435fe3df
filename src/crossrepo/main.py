"""Executable CLI entrypoint for ``crossrepo``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit-code contract."""

    SUCCESS = 0
    PARTIAL_FAILURE = 1
    CONFIG_ERROR = 2
    ENVIRONMENT_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and map anything that escapes it onto :class:`ExitCode`."""

    try:
        from crossrepo.ui.cli import run_cli

        return _coerce_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 after --help.
        return _coerce_exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            print(f"error: {str(exc).strip() or type(exc).__name__}", file=sys.stderr)
        return int(code)


def main() -> None:
    """Console-script entrypoint."""

    raise SystemExit(cli_entrypoint())


def _coerce_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int):
        try:
            return int(ExitCode(raw_code))
        except ValueError:
            return int(ExitCode.INTERNAL_ERROR)
    if isinstance(raw_code, str) and raw_code.strip():
        print(raw_code.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from crossrepo.config import ConfigLoadError, ConfigValidationError
    from crossrepo.integration.github import GitHubError
    from crossrepo.workspace import DependencyInstallError, EnvironmentValidationError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
        (
            (EnvironmentValidationError, DependencyInstallError, GitHubError),
            ExitCode.ENVIRONMENT_ERROR,
        ),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and the exceptions it was raised from or during, outermost first."""

    visited: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__


__all__ = ["ExitCode", "cli_entrypoint", "main"]
