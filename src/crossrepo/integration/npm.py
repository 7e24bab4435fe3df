"""npm package session bound to one local checkout."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from crossrepo.constants import DEFAULT_DIST_TAG
from crossrepo.integration.process import run_command

if TYPE_CHECKING:
    from crossrepo.integration.process import CommandRunner, ExecResult


class NpmPackage:
    """Publish the package rooted at ``dir``."""

    def __init__(self, dir: Path | str, *, runner: CommandRunner | None = None) -> None:
        self.dir = Path(dir).resolve()
        self._runner: CommandRunner = runner if runner is not None else run_command

    def __repr__(self) -> str:
        return f"NpmPackage({self.dir.as_posix()!r})"

    async def publish(self, dist_tag: str = DEFAULT_DIST_TAG) -> ExecResult:
        tag = dist_tag.strip()
        if not tag:
            raise ValueError("dist_tag cannot be empty")
        return await self._runner(self.dir, "npm", ["publish", "--tag", tag])


__all__ = ["NpmPackage"]
