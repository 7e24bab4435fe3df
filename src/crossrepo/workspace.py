"""
Multi-repository workspace: initialization pipeline and batch operations.

A :class:`Workspace` resolves repo-selection patterns against GitHub, materializes
each repository under one root directory, links their Bower dependency graph so
every repo resolves its siblings from disk, and then applies uniform operations
(branch, commit, push, publish, arbitrary coroutines) across the working set.

Initialization threads the working set through ordered phases. After each phase
the set is narrowed to the repos that succeeded; every repo that drops out is
recorded in a failure ledger keyed by repo (first failing phase wins). Ordinary
per-repo failures never abort the run; only environment validation, repeated
initialization, and the workspace-wide dependency install raise.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType, TracebackType
from typing import Any, TypeAlias, TypeVar

import structlog

from crossrepo.constants import (
    BOWER_MANIFEST_FILENAME,
    BOWERRC_FILENAME,
    DEFAULT_DIST_TAG,
    DEFAULT_MAX_OUTPUT_BYTES,
    FS_CONCURRENCY_PRESET,
    GITHUB_CONCURRENCY_PRESET,
    NPM_PUBLISH_CONCURRENCY_PRESET,
    REQUIRED_COMMANDS,
)
from crossrepo.integration.base import (
    PackageSession,
    RepoHostingConnection,
    VersionControlSession,
)
from crossrepo.integration.bower import merge_bower_manifests, read_bower_manifest
from crossrepo.integration.git import GitRepo
from crossrepo.integration.github import GitHubConnection, GitHubRepo, GitHubRepoReference
from crossrepo.integration.npm import NpmPackage
from crossrepo.integration.process import (
    CommandError,
    CommandRunner,
    ExecResult,
    command_exists,
    run_command,
)
from crossrepo.observability.logging import correlation_scope
from crossrepo.utils.concurrency import BatchResult, batch_process
from crossrepo.utils.fs import atomic_write, ensure_directory, remove_tree, safe_delete

R = TypeVar("R")

GitFactory: TypeAlias = Callable[[Path], VersionControlSession]
NpmFactory: TypeAlias = Callable[[Path], PackageSession]
CommandExistsFn: TypeAlias = Callable[[str], bool]


class WorkspaceError(RuntimeError):
    """Base error for workspace-level failures."""


class WorkspaceStateError(WorkspaceError):
    """Raised when an operation is invalid for the workspace's lifecycle state."""


class EnvironmentValidationError(WorkspaceError):
    """Raised when a required external command is not installed."""


class DependencyInstallError(WorkspaceError):
    """Raised when the workspace-wide dependency install fails."""


class InitPhase(StrEnum):
    """Ordered initialization phases that narrow the working set."""

    RESOLVE = "resolve"
    PREPARE_FOLDERS = "prepare_folders"
    CLONE_OR_UPDATE = "clone_or_update"
    CONFIGURE_DEPENDENCIES = "configure_dependencies"


@dataclass(frozen=True, slots=True)
class WorkspaceRepo:
    """One repository materialized inside the workspace.

    Identity is the checkout directory; the session handles are stateful and
    excluded from equality and hashing.
    """

    dir: Path
    git: VersionControlSession = field(compare=False, repr=False)
    npm: PackageSession = field(compare=False, repr=False)
    github: GitHubRepo = field(compare=False)

    @property
    def name(self) -> str:
        return self.github.name


@dataclass(frozen=True, slots=True)
class UnresolvedRepo:
    """A requested repository that was dropped before a :class:`WorkspaceRepo` existed."""

    requested_name: str
    reason: str


@dataclass(frozen=True, slots=True)
class PhaseOutcome:
    """Working set that survived one initialization phase."""

    phase: InitPhase
    repos: tuple[WorkspaceRepo, ...]


@dataclass(frozen=True, slots=True)
class InitResult:
    """Outcome of :meth:`Workspace.init`."""

    repos: tuple[WorkspaceRepo, ...]
    failures: Mapping[WorkspaceRepo, Exception]
    unresolved: tuple[UnresolvedRepo, ...] = ()
    phases: tuple[PhaseOutcome, ...] = ()


@dataclass(frozen=True, slots=True)
class Uninitialized:
    """Workspace has not completed ``init``."""


@dataclass(frozen=True, slots=True)
class Initialized:
    """Workspace completed ``init``; ``repos`` is the immutable working set."""

    repos: tuple[WorkspaceRepo, ...]


WorkspaceState: TypeAlias = Uninitialized | Initialized


@dataclass(frozen=True, slots=True)
class ConcurrencyPresets:
    """Concurrency ceilings per backing system."""

    filesystem: int = FS_CONCURRENCY_PRESET
    github: int = GITHUB_CONCURRENCY_PRESET
    npm_publish: int = NPM_PUBLISH_CONCURRENCY_PRESET

    def __post_init__(self) -> None:
        for name in ("filesystem", "github", "npm_publish"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"concurrency.{name} must be a positive integer")


@dataclass(frozen=True, slots=True)
class _DependencyPin:
    manifest: Mapping[str, Any]
    package: str
    pin: str


def _in_repo_scope(
    operation: Callable[[WorkspaceRepo], Awaitable[R]],
) -> Callable[[WorkspaceRepo], Awaitable[R]]:
    async def scoped(repo: WorkspaceRepo) -> R:
        with correlation_scope(repo=repo.github.full_name):
            return await operation(repo)

    return scoped


class Workspace:
    """Session holding every repository managed for one run."""

    def __init__(
        self,
        dir: Path | str,
        *,
        token: str | None = None,
        github: RepoHostingConnection | None = None,
        concurrency: ConcurrencyPresets | None = None,
        git_factory: GitFactory = GitRepo,
        npm_factory: NpmFactory = NpmPackage,
        command_exists_fn: CommandExistsFn = command_exists,
        runner: CommandRunner = run_command,
        required_commands: Sequence[str] = REQUIRED_COMMANDS,
        logger: Any | None = None,
    ) -> None:
        self.dir = Path(dir).expanduser().resolve()
        self._owned_github: GitHubConnection | None = None
        if github is None:
            github = self._owned_github = GitHubConnection(token)
        self._github: RepoHostingConnection = github
        self._concurrency = concurrency if concurrency is not None else ConcurrencyPresets()
        self._git_factory = git_factory
        self._npm_factory = npm_factory
        self._command_exists = command_exists_fn
        self._runner = runner
        self._required_commands = tuple(required_commands)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._state: WorkspaceState = Uninitialized()
        self._initializing = False

    async def __aenter__(self) -> Workspace:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the GitHub connection if this workspace created it."""

        if self._owned_github is not None:
            await self._owned_github.aclose()

    @property
    def state(self) -> WorkspaceState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return isinstance(self._state, Initialized)

    @property
    def repos(self) -> tuple[WorkspaceRepo, ...]:
        """Initialized working set."""

        return self._require_initialized().repos

    # ------------------------------------------------------------------
    # initialization pipeline
    # ------------------------------------------------------------------

    async def init(
        self,
        include: Sequence[str],
        exclude: Sequence[str] = (),
        *,
        fresh: bool = False,
        verbose: bool = False,
    ) -> InitResult:
        """Resolve, materialize, and link the selected repositories.

        Raises :class:`WorkspaceStateError` when called twice,
        :class:`EnvironmentValidationError` when a required command is missing,
        and :class:`DependencyInstallError` when the shared install fails. Every
        other failure is attributed to its repo in ``InitResult.failures``.
        """

        self._init_validate()
        self._initializing = True
        try:
            return await self._run_init(include, exclude, fresh=fresh, verbose=verbose)
        finally:
            self._initializing = False

    async def _run_init(
        self,
        include: Sequence[str],
        exclude: Sequence[str],
        *,
        fresh: bool,
        verbose: bool,
    ) -> InitResult:
        failures: dict[WorkspaceRepo, Exception] = {}
        phases: list[PhaseOutcome] = []

        with correlation_scope(phase=InitPhase.RESOLVE.value):
            github_repos, unresolved = await self._determine_github_repos(include, exclude)
            repos, collisions = self._open_workspace_repos(github_repos)
            unresolved.extend(collisions)
        phases.append(PhaseOutcome(InitPhase.RESOLVE, repos))

        with correlation_scope(phase=InitPhase.PREPARE_FOLDERS.value):
            prepared = await self._prepare_workspace_folders(repos, fresh=fresh, verbose=verbose)
            repos = self._narrow(InitPhase.PREPARE_FOLDERS, repos, prepared, failures)
        phases.append(PhaseOutcome(InitPhase.PREPARE_FOLDERS, repos))

        with correlation_scope(phase=InitPhase.CLONE_OR_UPDATE.value):
            updated = await self._clone_or_update_workspace_repos(repos, verbose=verbose)
            repos = self._narrow(InitPhase.CLONE_OR_UPDATE, repos, updated, failures)
        phases.append(PhaseOutcome(InitPhase.CLONE_OR_UPDATE, repos))

        with correlation_scope(phase=InitPhase.CONFIGURE_DEPENDENCIES.value):
            configured = await self._configure_bower_workspace(repos)
            repos = self._narrow(InitPhase.CONFIGURE_DEPENDENCIES, repos, configured, failures)
        phases.append(PhaseOutcome(InitPhase.CONFIGURE_DEPENDENCIES, repos))

        await self._install_workspace_dependencies(verbose=verbose)

        self._state = Initialized(repos)
        self._logger.info(
            "workspace_initialized",
            workspace_dir=self.dir.as_posix(),
            repo_count=len(repos),
            failure_count=len(failures),
            unresolved_count=len(unresolved),
        )
        return InitResult(
            repos=repos,
            failures=MappingProxyType(failures),
            unresolved=tuple(unresolved),
            phases=tuple(phases),
        )

    def _init_validate(self) -> None:
        if self.is_initialized:
            raise WorkspaceStateError("Workspace has already been initialized.")
        if self._initializing:
            raise WorkspaceStateError("Workspace initialization is already in progress.")
        for command in self._required_commands:
            if not self._command_exists(command):
                raise EnvironmentValidationError(
                    f'crossrepo: global "{command}" command not found. '
                    f"Install {command} on your machine and then retry."
                )

    async def _determine_github_repos(
        self,
        include: Sequence[str],
        exclude: Sequence[str],
    ) -> tuple[list[GitHubRepo], list[UnresolvedRepo]]:
        excluded = {name.strip().lower() for name in exclude if name.strip()}
        references = [
            reference
            for reference in await self._github.expand_repo_patterns(list(include))
            if reference.full_name.lower() not in excluded
        ]

        lookups: BatchResult[GitHubRepoReference, GitHubRepo] = await batch_process(
            references,
            self._github.get_repo_info,
            concurrency=self._concurrency.github,
        )

        unresolved: list[UnresolvedRepo] = []
        for reference in lookups.failed(references):
            error = lookups.failures[reference]
            self._logger.warning(
                "workspace_repo_not_found",
                repo=reference.full_name,
                error=str(error),
            )
            unresolved.append(UnresolvedRepo(reference.full_name, str(error)))

        resolved = [lookups.successes[reference] for reference in lookups.succeeded(references)]
        return resolved, unresolved

    def _open_workspace_repos(
        self,
        github_repos: Iterable[GitHubRepo],
    ) -> tuple[tuple[WorkspaceRepo, ...], list[UnresolvedRepo]]:
        opened: dict[Path, WorkspaceRepo] = {}
        collisions: list[UnresolvedRepo] = []
        for github_repo in github_repos:
            session_dir = (self.dir / github_repo.name).resolve()
            existing = opened.get(session_dir)
            if existing is not None:
                reason = (
                    f"directory {session_dir.name!r} is already used by "
                    f"{existing.github.full_name}"
                )
                self._logger.warning(
                    "workspace_repo_dir_collision",
                    repo=github_repo.full_name,
                    error=reason,
                )
                collisions.append(UnresolvedRepo(github_repo.full_name, reason))
                continue
            opened[session_dir] = WorkspaceRepo(
                dir=session_dir,
                git=self._git_factory(session_dir),
                npm=self._npm_factory(session_dir),
                github=github_repo,
            )
        return tuple(opened.values()), collisions

    async def _prepare_workspace_folders(
        self,
        repos: Sequence[WorkspaceRepo],
        *,
        fresh: bool,
        verbose: bool,
    ) -> BatchResult[WorkspaceRepo, None]:
        if fresh:
            self._progress(verbose, "workspace_folder_removed", path=self.dir.as_posix())
            await asyncio.to_thread(remove_tree, self.dir)

        if ensure_directory(self.dir):
            self._progress(verbose, "workspace_folder_created", path=self.dir.as_posix())

        # A folder that exists but is not a checkout (an abandoned clone, or a
        # package the dependency tool installed in place) must go before cloning.
        async def clean(repo: WorkspaceRepo) -> None:
            if repo.dir.exists() and not repo.git.is_git():
                self._progress(verbose, "workspace_repo_folder_removed", repo=repo.name)
                await asyncio.to_thread(safe_delete, repo.dir, self.dir)

        return await batch_process(
            repos, _in_repo_scope(clean), concurrency=self._concurrency.filesystem
        )

    async def _clone_or_update_workspace_repos(
        self,
        repos: Sequence[WorkspaceRepo],
        *,
        verbose: bool,
    ) -> BatchResult[WorkspaceRepo, None]:
        async def clone_or_update(repo: WorkspaceRepo) -> None:
            if repo.git.is_git():
                await repo.git.fetch()
                await repo.git.destroy_all_uncommitted_changes_and_files()
                self._progress(verbose, "workspace_repo_updated", repo=repo.name)
            else:
                await repo.git.clone(repo.github.clone_url)
                self._progress(verbose, "workspace_repo_cloned", repo=repo.name)
            await repo.git.checkout(repo.github.ref or repo.github.default_branch)

        return await batch_process(
            repos, _in_repo_scope(clone_or_update), concurrency=self._concurrency.filesystem
        )

    async def _configure_bower_workspace(
        self,
        repos: Sequence[WorkspaceRepo],
    ) -> BatchResult[WorkspaceRepo, _DependencyPin]:
        """Point Bower at the workspace root and pin every repo to its own checkout.

        ``.bowerrc`` makes the root itself the install directory. The merged
        ``bower.json`` depends on every repo at ``./<name>#<sha>`` so direct and
        transitive dependencies on a sibling resolve to the local checkout.
        """

        atomic_write(self.dir / BOWERRC_FILENAME, json.dumps({"directory": "."}) + "\n")

        async def resolve_pin(repo: WorkspaceRepo) -> _DependencyPin:
            manifest = read_bower_manifest(repo.dir)
            sha = await repo.git.get_head_sha()
            return _DependencyPin(manifest=manifest, package=repo.name, pin=f"./{repo.name}#{sha}")

        results = await batch_process(
            repos, _in_repo_scope(resolve_pin), concurrency=self._concurrency.filesystem
        )

        survivors = results.succeeded(repos)
        merged = merge_bower_manifests([results.successes[repo].manifest for repo in survivors])
        for repo in survivors:
            entry = results.successes[repo]
            merged["dependencies"][entry.package] = entry.pin

        atomic_write(
            self.dir / BOWER_MANIFEST_FILENAME,
            json.dumps(merged, indent=2, sort_keys=True) + "\n",
        )
        return results

    async def _install_workspace_dependencies(self, *, verbose: bool) -> None:
        self._progress(verbose, "workspace_dependencies_installing", path=self.dir.as_posix())
        try:
            await self._runner(
                self.dir,
                "bower",
                ["install", "-F"],
                max_output_bytes=DEFAULT_MAX_OUTPUT_BYTES,
            )
        except (CommandError, OSError) as exc:
            raise DependencyInstallError(
                f"bower install failed in {self.dir.as_posix()}: {exc}"
            ) from exc

    def _narrow(
        self,
        phase: InitPhase,
        repos: Sequence[WorkspaceRepo],
        results: BatchResult[WorkspaceRepo, Any],
        ledger: dict[WorkspaceRepo, Exception],
    ) -> tuple[WorkspaceRepo, ...]:
        for repo in results.failed(repos):
            error = results.failures[repo]
            ledger.setdefault(repo, error)
            self._logger.warning(
                "workspace_repo_failed",
                repo=repo.github.full_name,
                phase=phase.value,
                error=str(error),
                error_type=type(error).__name__,
            )
        return results.succeeded(repos)

    def _progress(self, verbose: bool, event: str, **fields: object) -> None:
        if verbose:
            self._logger.info(event, **fields)

    # ------------------------------------------------------------------
    # batch operations over the initialized working set
    # ------------------------------------------------------------------

    def _require_initialized(self) -> Initialized:
        state = self._state
        if not isinstance(state, Initialized):
            raise WorkspaceStateError("Workspace has not been initialized, run init() first.")
        return state

    def _select(self, repos: Iterable[WorkspaceRepo] | None) -> tuple[WorkspaceRepo, ...]:
        state = self._require_initialized()
        if repos is None:
            return state.repos
        selected = tuple(repos)
        outside = [repo.github.full_name for repo in selected if repo not in state.repos]
        if outside:
            raise ValueError(
                "repos are not part of the initialized working set: " + ", ".join(outside)
            )
        return selected

    async def run(
        self,
        fn: Callable[[WorkspaceRepo], Any],
        repos: Iterable[WorkspaceRepo] | None = None,
        *,
        concurrency: int = 1,
    ) -> BatchResult[WorkspaceRepo, Any]:
        """Run the coroutine function ``fn`` over each repo."""

        selected = self._select(repos)
        return await batch_process(selected, _in_repo_scope(fn), concurrency=concurrency)

    async def start_new_branch(
        self,
        new_branch: str,
        repos: Iterable[WorkspaceRepo] | None = None,
    ) -> BatchResult[WorkspaceRepo, ExecResult]:
        """Create ``new_branch`` in each repo and switch to it."""

        selected = self._select(repos)

        async def create(repo: WorkspaceRepo) -> ExecResult:
            return await repo.git.create_branch(new_branch)

        return await batch_process(
            selected, _in_repo_scope(create), concurrency=self._concurrency.filesystem
        )

    async def commit_changes(
        self,
        message: str,
        repos: Iterable[WorkspaceRepo] | None = None,
    ) -> BatchResult[WorkspaceRepo, ExecResult]:
        """Commit all pending changes in each repo with ``message``."""

        selected = self._select(repos)

        async def commit(repo: WorkspaceRepo) -> ExecResult:
            return await repo.git.commit(message)

        return await batch_process(
            selected, _in_repo_scope(commit), concurrency=self._concurrency.filesystem
        )

    async def push_changes_to_github(
        self,
        repos: Iterable[WorkspaceRepo] | None = None,
        *,
        push_to_branch: str | None = None,
        force: bool = False,
    ) -> BatchResult[WorkspaceRepo, ExecResult]:
        """Push each repo's current branch, optionally to ``push_to_branch``."""

        selected = self._select(repos)

        async def push(repo: WorkspaceRepo) -> ExecResult:
            return await repo.git.push_current_branch_to_origin(push_to_branch, force)

        return await batch_process(
            selected, _in_repo_scope(push), concurrency=self._concurrency.github
        )

    async def publish_packages_to_npm(
        self,
        repos: Iterable[WorkspaceRepo] | None = None,
        *,
        dist_tag: str = DEFAULT_DIST_TAG,
    ) -> BatchResult[WorkspaceRepo, ExecResult]:
        """Publish each repo's package under ``dist_tag``."""

        selected = self._select(repos)

        async def publish(repo: WorkspaceRepo) -> ExecResult:
            return await repo.npm.publish(dist_tag)

        return await batch_process(
            selected, _in_repo_scope(publish), concurrency=self._concurrency.npm_publish
        )


__all__ = [
    "ConcurrencyPresets",
    "DependencyInstallError",
    "EnvironmentValidationError",
    "InitPhase",
    "InitResult",
    "Initialized",
    "PhaseOutcome",
    "Uninitialized",
    "UnresolvedRepo",
    "Workspace",
    "WorkspaceError",
    "WorkspaceRepo",
    "WorkspaceState",
    "WorkspaceStateError",
]
