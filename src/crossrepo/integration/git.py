"""Git session bound to one local checkout inside the workspace."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from crossrepo.integration.process import run_command

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from crossrepo.integration.process import CommandRunner, ExecResult

_GIT_ENV: dict[str, str] = {"GIT_TERMINAL_PROMPT": "0"}


class GitError(RuntimeError):
    """Raised when a git operation cannot proceed in the checkout's current state."""


class GitRepo:
    """Async wrapper around the git CLI for a single checkout directory."""

    def __init__(
        self,
        dir: Path | str,
        *,
        remote: str = "origin",
        runner: CommandRunner | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.dir = Path(dir).resolve()
        self.remote = remote
        self._runner: CommandRunner = runner if runner is not None else run_command
        self._env = {**_GIT_ENV, **(env_overrides or {})}

    def __repr__(self) -> str:
        return f"GitRepo({self.dir.as_posix()!r})"

    def is_git(self) -> bool:
        """Return ``True`` when the directory holds a git checkout."""

        return (self.dir / ".git").exists()

    async def clone(self, url: str) -> ExecResult:
        """Clone ``url`` into the session directory."""

        self.dir.parent.mkdir(parents=True, exist_ok=True)
        return await self._runner(
            self.dir.parent,
            "git",
            ["clone", "--quiet", url, str(self.dir)],
            env_overrides=self._env,
        )

    async def fetch(self) -> ExecResult:
        return await self._git(["fetch", "--quiet", "--prune", self.remote])

    async def destroy_all_uncommitted_changes_and_files(self) -> ExecResult:
        """Hard-reset tracked files and delete every untracked or ignored file."""

        await self._git(["reset", "--quiet", "--hard"])
        return await self._git(["clean", "-fdx", "--quiet"])

    async def checkout(self, ref: str) -> ExecResult:
        """Check out ``ref`` and align it with the remote-tracking branch when one exists.

        Tags and commit ids have no remote-tracking branch and are left detached.
        """

        if not ref.strip():
            raise GitError("ref cannot be empty.")
        result = await self._git(["checkout", "--quiet", ref])
        remote_ref = f"refs/remotes/{self.remote}/{ref}"
        tracking = await self._git(["show-ref", "--verify", "--quiet", remote_ref], check=False)
        if tracking.returncode == 0:
            return await self._git(["reset", "--quiet", "--hard", f"{self.remote}/{ref}"])
        return result

    async def create_branch(self, name: str) -> ExecResult:
        """Create ``name`` from HEAD and switch to it."""

        if not name.strip():
            raise GitError("branch name cannot be empty.")
        return await self._git(["checkout", "--quiet", "-b", name])

    async def commit(self, message: str) -> ExecResult:
        """Stage every pending change and commit it with ``message``."""

        title = message.strip()
        if not title:
            raise GitError("Commit message cannot be empty.")
        await self._git(["add", "--all"])
        return await self._git(["commit", "--quiet", "-m", title])

    async def push_current_branch_to_origin(
        self,
        push_to_branch: str | None = None,
        force: bool = False,
    ) -> ExecResult:
        """Push the current branch to ``push_to_branch`` (default: same name) on the remote."""

        current = await self.get_current_branch()
        target = push_to_branch or current
        args = ["push", "--quiet", self.remote, f"{current}:{target}"]
        if force:
            args.append("--force")
        return await self._git(args)

    async def get_head_sha(self) -> str:
        return (await self._git(["rev-parse", "HEAD"])).stdout.strip()

    async def get_current_branch(self) -> str:
        branch = (await self._git(["branch", "--show-current"])).stdout.strip()
        if not branch:
            raise GitError("Detached HEAD is not supported for this operation.")
        return branch

    async def _git(self, args: Sequence[str], *, check: bool = True) -> ExecResult:
        return await self._runner(self.dir, "git", args, env_overrides=self._env, check=check)


__all__ = ["GitError", "GitRepo"]
