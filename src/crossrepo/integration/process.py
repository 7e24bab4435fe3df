"""Async process execution and command discovery helpers."""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

from crossrepo.constants import DEFAULT_MAX_OUTPUT_BYTES

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_READ_CHUNK_BYTES: Final[int] = 64 * 1024


class CommandError(RuntimeError):
    """Raised when a subprocess exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
        message: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            message = f"command failed ({returncode}): {' '.join(command)}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class OutputLimitError(CommandError):
    """Raised when a subprocess writes more output than the configured cap."""


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str


class CommandRunner(Protocol):
    """Injectable async command runner used for offline testing."""

    async def __call__(
        self,
        cwd: Path | str,
        program: str,
        args: Sequence[str] = (),
        *,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        env_overrides: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> ExecResult: ...


def command_exists(name: str) -> bool:
    """Return ``True`` when ``name`` resolves to an executable on ``PATH``."""

    return shutil.which(name) is not None


async def run_command(
    cwd: Path | str,
    program: str,
    args: Sequence[str] = (),
    *,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    env_overrides: Mapping[str, str] | None = None,
    check: bool = True,
) -> ExecResult:
    """Run ``program`` with ``args`` in ``cwd`` and capture its output.

    Output is read as it arrives. Once either stream passes
    ``max_output_bytes`` the child's process group is killed and
    :class:`OutputLimitError` is raised regardless of ``check``. If the
    awaiting task is cancelled the process group is killed and reaped before
    the cancellation propagates.
    """

    if max_output_bytes <= 0:
        raise ValueError("max_output_bytes must be > 0")

    command = (program, *args)
    run_cwd = Path(cwd).resolve()
    env = os.environ.copy()
    env.update(env_overrides or {})

    process = await asyncio.create_subprocess_exec(
        *command,
        cwd=run_cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        # Own process group so the whole tree can be signalled.
        start_new_session=sys.platform != "win32",
    )
    assert process.stdout is not None
    assert process.stderr is not None

    raw_stdout = bytearray()
    raw_stderr = bytearray()
    overflow = asyncio.Event()
    pumps = asyncio.gather(
        _pump(process.stdout, raw_stdout, max_output_bytes, overflow),
        _pump(process.stderr, raw_stderr, max_output_bytes, overflow),
    )
    overflow_wait = asyncio.ensure_future(overflow.wait())
    try:
        await asyncio.wait((pumps, overflow_wait), return_when=asyncio.FIRST_COMPLETED)
        if overflow.is_set():
            _kill_process_group(process)
        await asyncio.shield(pumps)
        await process.wait()
    except BaseException:
        _kill_process_group(process)
        await asyncio.gather(pumps, return_exceptions=True)
        await process.wait()
        raise
    finally:
        overflow_wait.cancel()

    returncode = process.returncode if process.returncode is not None else -1
    if overflow.is_set():
        raise OutputLimitError(
            command=command,
            returncode=returncode,
            stdout=bytes(raw_stdout[:max_output_bytes]).decode("utf-8", errors="replace"),
            stderr=bytes(raw_stderr[:max_output_bytes]).decode("utf-8", errors="replace"),
            message=(
                f"command output exceeded {max_output_bytes} bytes: {' '.join(command)}"
            ),
        )

    result = ExecResult(
        command=command,
        cwd=run_cwd.as_posix(),
        returncode=returncode,
        stdout=raw_stdout.decode("utf-8", errors="replace"),
        stderr=raw_stderr.decode("utf-8", errors="replace"),
    )
    if check and result.returncode != 0:
        raise CommandError(
            command=result.command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    return result


async def _pump(
    stream: asyncio.StreamReader,
    sink: bytearray,
    limit: int,
    overflow: asyncio.Event,
) -> None:
    # Reads to EOF so the pipe is always drained; stops storing past the cap.
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        if len(sink) > limit:
            continue
        sink.extend(chunk)
        if len(sink) > limit:
            overflow.set()


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if sys.platform == "win32":
        if process.returncode is None:
            process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        return


__all__ = [
    "CommandError",
    "CommandRunner",
    "ExecResult",
    "OutputLimitError",
    "command_exists",
    "run_command",
]
