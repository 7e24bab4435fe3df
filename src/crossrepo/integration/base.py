"""Collaborator contracts consumed by the workspace pipeline.

The concrete implementations live beside this module (``git``, ``npm``,
``github``); the protocols let tests and alternative backends stand in for them.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from crossrepo.integration.github import GitHubRepo, GitHubRepoReference
    from crossrepo.integration.process import ExecResult


class VersionControlSession(Protocol):
    """Version-control operations over one local checkout."""

    dir: Path

    def is_git(self) -> bool: ...

    async def clone(self, url: str) -> ExecResult: ...

    async def fetch(self) -> ExecResult: ...

    async def destroy_all_uncommitted_changes_and_files(self) -> ExecResult: ...

    async def checkout(self, ref: str) -> ExecResult: ...

    async def create_branch(self, name: str) -> ExecResult: ...

    async def commit(self, message: str) -> ExecResult: ...

    async def push_current_branch_to_origin(
        self,
        push_to_branch: str | None = None,
        force: bool = False,
    ) -> ExecResult: ...

    async def get_head_sha(self) -> str: ...


class PackageSession(Protocol):
    """Package-registry operations over one local checkout."""

    dir: Path

    async def publish(self, dist_tag: str = ...) -> ExecResult: ...


class RepoHostingConnection(Protocol):
    """Repository-hosting service lookups used during resolution."""

    async def expand_repo_patterns(self, patterns: Sequence[str]) -> list[GitHubRepoReference]: ...

    async def get_repo_info(self, reference: GitHubRepoReference) -> GitHubRepo: ...


__all__ = ["PackageSession", "RepoHostingConnection", "VersionControlSession"]
