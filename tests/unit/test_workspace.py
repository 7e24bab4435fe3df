"""Tests for the workspace initialization pipeline and batch verbs, using in-memory collaborators."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

import pytest
from structlog.testing import capture_logs

from crossrepo.integration.github import (
    GitHubError,
    GitHubRepo,
    GitHubRepoReference,
    parse_repo_pattern,
)
from crossrepo.integration.process import CommandError, ExecResult
from crossrepo.observability.logging import get_correlation_context
from crossrepo.workspace import (
    ConcurrencyPresets,
    DependencyInstallError,
    EnvironmentValidationError,
    InitPhase,
    Initialized,
    Uninitialized,
    UnresolvedRepo,
    Workspace,
    WorkspaceRepo,
    WorkspaceStateError,
)


def _ok(*command: str) -> ExecResult:
    return ExecResult(command, ".", 0, "", "")


@dataclass
class FakeWorld:
    """Shared state standing in for GitHub, git remotes, npm, and bower."""

    repos: dict[str, GitHubRepo] = field(default_factory=dict)
    manifests: dict[str, object] = field(default_factory=dict)
    shas: dict[str, str] = field(default_factory=dict)
    sha_delays: dict[str, float] = field(default_factory=dict)
    failures: dict[tuple[str, str], Exception] = field(default_factory=dict)
    missing_commands: set[str] = field(default_factory=set)
    install_error: Exception | None = None
    calls: list[tuple[str, ...]] = field(default_factory=list)
    contexts: dict[tuple[str, str], dict[str, str]] = field(default_factory=dict)
    active: int = 0
    peak: int = 0
    op_delay: float = 0.0

    def add_repo(
        self,
        full_name: str,
        *,
        default_branch: str = "main",
        manifest: object | None = None,
    ) -> None:
        owner, name = full_name.split("/")
        self.repos[full_name.lower()] = GitHubRepo(
            owner=owner,
            name=name,
            full_name=full_name,
            clone_url=f"https://github.com/{full_name}.git",
            default_branch=default_branch,
        )
        self.shas[name] = f"{name}-sha"
        if manifest is not None:
            self.manifests[name] = manifest

    def fail(self, operation: str, name: str, error: Exception | None = None) -> None:
        self.failures[(operation, name)] = error or RuntimeError(f"{operation} failed for {name}")

    def calls_for(self, operation: str) -> list[str]:
        return [call[1] for call in self.calls if call[0] == operation]

    async def step(self, operation: str, name: str, *extra: str) -> None:
        self.calls.append((operation, name, *extra))
        self.contexts[(operation, name)] = get_correlation_context()
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.op_delay)
            error = self.failures.get((operation, name))
            if error is not None:
                raise error
        finally:
            self.active -= 1

    async def runner(
        self,
        cwd: Path | str,
        program: str,
        args: Sequence[str] = (),
        *,
        max_output_bytes: int = 0,
        env_overrides: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> ExecResult:
        self.calls.append(("exec", str(cwd), program, *args, str(max_output_bytes)))
        if self.install_error is not None:
            raise self.install_error
        return _ok(program, *args)


class FakeGitHub:
    def __init__(self, world: FakeWorld) -> None:
        self._world = world
        self.expanded: list[list[str]] = []
        self.closed = False

    async def expand_repo_patterns(self, patterns: Sequence[str]) -> list[GitHubRepoReference]:
        self.expanded.append(list(patterns))
        out: list[GitHubRepoReference] = []
        for pattern in patterns:
            reference = parse_repo_pattern(pattern)
            if not reference.is_pattern:
                out.append(reference)
                continue
            for repo in self._world.repos.values():
                if repo.owner == reference.owner and fnmatchcase(
                    repo.name.lower(), reference.name.lower()
                ):
                    out.append(GitHubRepoReference(repo.owner, repo.name, reference.ref))
        return out

    async def aclose(self) -> None:
        self.closed = True

    async def get_repo_info(self, reference: GitHubRepoReference) -> GitHubRepo:
        repo = self._world.repos.get(reference.full_name.lower())
        if repo is None:
            raise GitHubError(f"repository not found: {reference.full_name}", status_code=404)
        return GitHubRepo(
            owner=repo.owner,
            name=repo.name,
            full_name=repo.full_name,
            clone_url=repo.clone_url,
            default_branch=repo.default_branch,
            ref=reference.ref,
        )


class FakeGit:
    def __init__(self, dir: Path, world: FakeWorld) -> None:
        self.dir = dir
        self._world = world

    @property
    def _name(self) -> str:
        return self.dir.name

    def is_git(self) -> bool:
        error = self._world.failures.get(("is_git", self._name))
        if error is not None:
            raise error
        return (self.dir / ".git").exists()

    async def clone(self, url: str) -> ExecResult:
        await self._world.step("clone", self._name, url)
        (self.dir / ".git").mkdir(parents=True)
        manifest = self._world.manifests.get(self._name)
        if isinstance(manifest, str):
            (self.dir / "bower.json").write_text(manifest, encoding="utf-8")
        elif manifest is not None:
            (self.dir / "bower.json").write_text(json.dumps(manifest), encoding="utf-8")
        return _ok("git", "clone", url)

    async def fetch(self) -> ExecResult:
        await self._world.step("fetch", self._name)
        return _ok("git", "fetch")

    async def destroy_all_uncommitted_changes_and_files(self) -> ExecResult:
        await self._world.step("destroy", self._name)
        return _ok("git", "clean")

    async def checkout(self, ref: str) -> ExecResult:
        await self._world.step("checkout", self._name, ref)
        return _ok("git", "checkout", ref)

    async def create_branch(self, name: str) -> ExecResult:
        await self._world.step("create_branch", self._name, name)
        return _ok("git", "checkout", "-b", name)

    async def commit(self, message: str) -> ExecResult:
        await self._world.step("commit", self._name, message)
        return _ok("git", "commit", "-m", message)

    async def push_current_branch_to_origin(
        self, push_to_branch: str | None = None, force: bool = False
    ) -> ExecResult:
        await self._world.step("push", self._name, str(push_to_branch), str(force))
        return _ok("git", "push")

    async def get_head_sha(self) -> str:
        self._world.calls.append(("sha", self._name))
        await asyncio.sleep(self._world.sha_delays.get(self._name, 0))
        error = self._world.failures.get(("sha", self._name))
        if error is not None:
            raise error
        return self._world.shas[self._name]


class FakeNpm:
    def __init__(self, dir: Path, world: FakeWorld) -> None:
        self.dir = dir
        self._world = world

    async def publish(self, dist_tag: str = "latest") -> ExecResult:
        await self._world.step("publish", self.dir.name, dist_tag)
        return _ok("npm", "publish", "--tag", dist_tag)


@pytest.fixture
def world() -> FakeWorld:
    state = FakeWorld()
    for name in ("A", "B", "C"):
        state.add_repo(f"acme/{name}", manifest={"name": name, "dependencies": {"polymer": "^1"}})
    return state


@pytest.fixture
def make_workspace(tmp_path: Path, world: FakeWorld) -> Callable[..., Workspace]:
    def factory(**overrides: Any) -> Workspace:
        options: dict[str, Any] = {
            "github": FakeGitHub(world),
            "git_factory": lambda path: FakeGit(path, world),
            "npm_factory": lambda path: FakeNpm(path, world),
            "command_exists_fn": lambda name: name not in world.missing_commands,
            "runner": world.runner,
        }
        options.update(overrides)
        return Workspace(tmp_path / "ws", **options)

    return factory


def _names(repos: Sequence[WorkspaceRepo]) -> list[str]:
    return [repo.name for repo in repos]


def _assert_monotonic_narrowing(result: Any) -> None:
    previous = {repo for phase in result.phases[:1] for repo in phase.repos}
    for outcome in result.phases[1:]:
        current = set(outcome.repos)
        assert current <= previous
        for dropped in previous - current:
            assert dropped in result.failures
            assert isinstance(result.failures[dropped], Exception)
        previous = current
    assert set(result.repos) == previous


# ---------------------------------------------------------------------------
# init pipeline
# ---------------------------------------------------------------------------


async def test_init_materializes_links_and_installs(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()

    result = await workspace.init(["acme/A", "acme/B", "acme/C"])

    root = tmp_path / "ws"
    assert _names(result.repos) == ["A", "B", "C"]
    assert dict(result.failures) == {}
    assert result.unresolved == ()
    assert [outcome.phase for outcome in result.phases] == list(InitPhase)
    assert isinstance(workspace.state, Initialized)
    assert workspace.repos == result.repos
    assert all(repo.dir == (root / repo.name).resolve() for repo in result.repos)

    assert json.loads((root / ".bowerrc").read_text(encoding="utf-8")) == {"directory": "."}
    manifest = json.loads((root / "bower.json").read_text(encoding="utf-8"))
    assert manifest["name"] == "crossrepo-workspace"
    assert manifest["dependencies"] == {
        "polymer": "^1",
        "A": "./A#A-sha",
        "B": "./B#B-sha",
        "C": "./C#C-sha",
    }

    installs = [call for call in world.calls if call[0] == "exec"]
    assert installs == [
        ("exec", str(root.resolve()), "bower", "install", "-F", str(1000 * 1024))
    ]
    assert world.calls_for("checkout") == ["A", "B", "C"]


async def test_exclude_removes_matching_repo_case_insensitively(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    result = await make_workspace().init(["acme/*"], exclude=["ACME/b"])

    assert sorted(_names(result.repos)) == ["A", "C"]
    assert dict(result.failures) == {}
    assert "B" not in world.calls_for("clone")


async def test_exclude_entries_are_names_not_globs(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    result = await make_workspace().init(["acme/*"], exclude=["acme/[ab]", "acme/*", " "])

    assert sorted(_names(result.repos)) == ["A", "B", "C"]


async def test_clone_failure_narrows_working_set_and_is_recorded(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    network_error = CommandError(
        command=("git", "clone"), returncode=128, stdout="", stderr="network unreachable"
    )
    world.fail("clone", "A", network_error)

    result = await make_workspace().init(["acme/A", "acme/B", "acme/C"])

    assert _names(result.repos) == ["B", "C"]
    assert {repo.name: error for repo, error in result.failures.items()} == {"A": network_error}
    assert "A" not in world.calls_for("checkout")
    assert "A" not in world.calls_for("sha")
    manifest = json.loads((tmp_path / "ws" / "bower.json").read_text(encoding="utf-8"))
    assert "A" not in manifest["dependencies"]
    assert set(manifest["dependencies"]) == {"polymer", "B", "C"}
    _assert_monotonic_narrowing(result)


async def test_failures_in_every_phase_keep_narrowing_monotonic(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.add_repo("acme/D", manifest="{not json")
    world.add_repo("acme/E")
    world.fail("checkout", "B")
    world.fail("sha", "C")

    result = await make_workspace().init(["acme/A", "acme/B", "acme/C", "acme/D", "acme/E"])

    assert _names(result.repos) == ["A", "E"]
    by_name = {repo.name: error for repo, error in result.failures.items()}
    assert set(by_name) == {"B", "C", "D"}
    assert "invalid JSON" in str(by_name["D"])
    phase_sets = {outcome.phase: _names(outcome.repos) for outcome in result.phases}
    assert phase_sets[InitPhase.CLONE_OR_UPDATE] == ["A", "C", "D", "E"]
    assert phase_sets[InitPhase.CONFIGURE_DEPENDENCIES] == ["A", "E"]
    _assert_monotonic_narrowing(result)


async def test_prepare_failure_drops_repo_before_clone(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    (tmp_path / "ws" / "A").mkdir(parents=True)
    inspect_error = PermissionError("cannot inspect A")
    world.fail("is_git", "A", inspect_error)

    result = await make_workspace().init(["acme/A", "acme/B", "acme/C"])

    assert _names(result.repos) == ["B", "C"]
    assert {repo.name: error for repo, error in result.failures.items()} == {"A": inspect_error}
    phase_sets = {outcome.phase: _names(outcome.repos) for outcome in result.phases}
    assert phase_sets[InitPhase.RESOLVE] == ["A", "B", "C"]
    for phase in (
        InitPhase.PREPARE_FOLDERS,
        InitPhase.CLONE_OR_UPDATE,
        InitPhase.CONFIGURE_DEPENDENCIES,
    ):
        assert phase_sets[phase] == ["B", "C"]
    assert "A" not in world.calls_for("clone")
    assert "A" not in world.calls_for("sha")
    assert (tmp_path / "ws" / "A").is_dir()
    manifest = json.loads((tmp_path / "ws" / "bower.json").read_text(encoding="utf-8"))
    assert "A" not in manifest["dependencies"]
    _assert_monotonic_narrowing(result)


async def test_per_repo_steps_carry_repo_and_phase_correlation(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    await make_workspace().init(["acme/A", "acme/B"])

    assert world.contexts[("clone", "A")] == {"phase": "clone_or_update", "repo": "acme/A"}
    assert world.contexts[("checkout", "B")] == {"phase": "clone_or_update", "repo": "acme/B"}
    assert get_correlation_context() == {}


async def test_unresolved_repos_are_reported_not_ledgered(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    with capture_logs() as logs:
        result = await make_workspace().init(["acme/A", "acme/ghost"])

    assert _names(result.repos) == ["A"]
    assert dict(result.failures) == {}
    assert result.unresolved == (
        UnresolvedRepo("acme/ghost", "repository not found: acme/ghost"),
    )
    warnings = [entry for entry in logs if entry["event"] == "workspace_repo_not_found"]
    assert warnings and warnings[0]["repo"] == "acme/ghost"
    assert warnings[0]["log_level"] == "warning"


async def test_directory_collision_is_reported_as_unresolved(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.add_repo("other/A")

    result = await make_workspace().init(["acme/A", "other/A"])

    assert [repo.github.full_name for repo in result.repos] == ["acme/A"]
    assert [item.requested_name for item in result.unresolved] == ["other/A"]
    assert "already used by acme/A" in result.unresolved[0].reason


async def test_pinned_ref_is_checked_out_instead_of_default_branch(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.add_repo("acme/D", default_branch="trunk")

    await make_workspace().init(["acme/A#v1.2.0", "acme/D"])

    checkouts = {call[1]: call[2] for call in world.calls if call[0] == "checkout"}
    assert checkouts == {"A": "v1.2.0", "D": "trunk"}


async def test_existing_checkout_is_updated_and_stray_folder_replaced(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    root = tmp_path / "ws"
    (root / "A" / ".git").mkdir(parents=True)
    (root / "B").mkdir(parents=True)
    (root / "B" / "leftover.txt").write_text("stale", encoding="utf-8")

    await make_workspace().init(["acme/A", "acme/B"])

    assert world.calls_for("fetch") == ["A"]
    assert world.calls_for("destroy") == ["A"]
    assert world.calls_for("clone") == ["B"]
    assert not (root / "B" / "leftover.txt").exists()


async def test_fresh_wipes_the_workspace_root(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    root = tmp_path / "ws"
    (root / "A" / ".git").mkdir(parents=True)
    (root / "unrelated.txt").write_text("old", encoding="utf-8")

    await make_workspace().init(["acme/A"], fresh=True)

    assert not (root / "unrelated.txt").exists()
    assert world.calls_for("clone") == ["A"]
    assert world.calls_for("fetch") == []


async def test_concurrent_pins_do_not_lose_updates(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.shas.update({"A": "1111111", "B": "2222222"})
    world.sha_delays.update({"A": 0.05, "B": 0.0})

    await make_workspace(concurrency=ConcurrencyPresets(filesystem=2)).init(["acme/A", "acme/B"])

    manifest = json.loads((tmp_path / "ws" / "bower.json").read_text(encoding="utf-8"))
    assert manifest["dependencies"]["A"] == "./A#1111111"
    assert manifest["dependencies"]["B"] == "./B#2222222"


async def test_install_failure_raises_and_leaves_workspace_uninitialized(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    cause = CommandError(command=("bower", "install"), returncode=1, stdout="", stderr="ENOTFOUND")
    world.install_error = cause
    workspace = make_workspace()

    with pytest.raises(DependencyInstallError, match="bower install failed") as excinfo:
        await workspace.init(["acme/A"])

    assert excinfo.value.__cause__ is cause
    assert isinstance(workspace.state, Uninitialized)
    with pytest.raises(WorkspaceStateError):
        _ = workspace.repos


async def test_missing_command_fails_before_any_side_effect(
    tmp_path: Path, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.missing_commands.add("bower")
    github = FakeGitHub(world)
    workspace = make_workspace(github=github)

    with pytest.raises(EnvironmentValidationError, match='"bower" command not found'):
        await workspace.init(["acme/A"])

    assert github.expanded == []
    assert world.calls == []
    assert not (tmp_path / "ws").exists()


async def test_second_init_fails_without_side_effects(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    github = FakeGitHub(world)
    workspace = make_workspace(github=github)
    await workspace.init(["acme/A"])
    calls_before = list(world.calls)

    with pytest.raises(WorkspaceStateError, match="already been initialized"):
        await workspace.init(["acme/B"])

    assert world.calls == calls_before
    assert github.expanded == [["acme/A"]]


async def test_init_while_init_in_progress_is_rejected(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.op_delay = 0.05
    workspace = make_workspace()

    first = asyncio.create_task(workspace.init(["acme/A"]))
    await asyncio.sleep(0.01)
    with pytest.raises(WorkspaceStateError, match="in progress"):
        await workspace.init(["acme/A"])
    await first

    assert workspace.is_initialized


async def test_progress_events_are_logged_only_when_verbose(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    with capture_logs() as loud:
        await make_workspace().init(["acme/B"], verbose=True)
    with capture_logs() as quiet:
        await make_workspace().init(["acme/A"])

    quiet_events = {entry["event"] for entry in quiet}
    loud_events = {entry["event"] for entry in loud}
    assert "workspace_repo_cloned" not in quiet_events
    assert "workspace_initialized" in quiet_events
    assert {"workspace_folder_created", "workspace_repo_cloned"} <= loud_events


def test_concurrency_presets_validate_values() -> None:
    assert ConcurrencyPresets() == ConcurrencyPresets(filesystem=6, github=12, npm_publish=2)
    with pytest.raises(ValueError, match="concurrency.github"):
        ConcurrencyPresets(github=0)


def test_workspace_repo_identity_is_its_directory(world: FakeWorld) -> None:
    repo = world.repos["acme/a"]
    first = WorkspaceRepo(Path("/ws/A"), FakeGit(Path("/ws/A"), world), FakeNpm(Path("/ws/A"), world), repo)
    second = WorkspaceRepo(Path("/ws/A"), FakeGit(Path("/ws/A"), world), FakeNpm(Path("/ws/A"), world), repo)

    assert first == second
    assert len({first, second}) == 1


# ---------------------------------------------------------------------------
# verbs
# ---------------------------------------------------------------------------


_VERBS: dict[str, Callable[[Workspace], Any]] = {
    "run": lambda ws: ws.run(lambda repo: asyncio.sleep(0)),
    "start_new_branch": lambda ws: ws.start_new_branch("feature"),
    "commit_changes": lambda ws: ws.commit_changes("message"),
    "push_changes_to_github": lambda ws: ws.push_changes_to_github(),
    "publish_packages_to_npm": lambda ws: ws.publish_packages_to_npm(),
}


@pytest.mark.parametrize("verb", sorted(_VERBS))
async def test_verbs_before_init_fail_without_touching_collaborators(
    verb: str, world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()

    with pytest.raises(WorkspaceStateError, match="not been initialized"):
        await _VERBS[verb](workspace)

    assert world.calls == []


async def test_verbs_apply_to_every_initialized_repo(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()
    result = await workspace.init(["acme/*"])
    world.calls.clear()

    branch = await workspace.start_new_branch("feature-x")
    commit = await workspace.commit_changes("bump deps")
    push = await workspace.push_changes_to_github(push_to_branch="release", force=True)
    publish = await workspace.publish_packages_to_npm(dist_tag="next")

    for batch in (branch, commit, push, publish):
        assert batch.ok
        assert set(batch.successes) == set(result.repos)
        assert all(isinstance(value, ExecResult) for value in batch.successes.values())
    assert sorted(world.calls_for("create_branch")) == ["A", "B", "C"]
    assert {call[2:] for call in world.calls if call[0] == "push"} == {("release", "True")}
    assert {call[2] for call in world.calls if call[0] == "publish"} == {"next"}


async def test_verb_failures_are_partitioned_per_repo(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()
    await workspace.init(["acme/A", "acme/B"])
    world.fail("commit", "B", RuntimeError("nothing to commit"))

    result = await workspace.commit_changes("msg")

    assert _names(result.succeeded(workspace.repos)) == ["A"]
    assert [str(error) for error in result.failures.values()] == ["nothing to commit"]


async def test_verbs_accept_an_explicit_subset(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()
    await workspace.init(["acme/A", "acme/B", "acme/C"])
    world.calls.clear()

    subset = [repo for repo in workspace.repos if repo.name != "B"]
    await workspace.start_new_branch("only-some", subset)

    assert sorted(world.calls_for("create_branch")) == ["A", "C"]


async def test_run_uses_caller_concurrency_and_returns_values(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()
    await workspace.init(["acme/*"])
    active = 0
    peak = 0

    async def count_files(repo: WorkspaceRepo) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return repo.name.lower()

    result = await workspace.run(count_files, concurrency=2)

    assert peak == 2
    assert {repo.name: value for repo, value in result.successes.items()} == {
        "A": "a",
        "B": "b",
        "C": "c",
    }


async def test_publish_respects_npm_publish_preset(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace(concurrency=ConcurrencyPresets(npm_publish=1, github=3))
    await workspace.init(["acme/*"])
    world.op_delay = 0.01

    world.peak = 0
    await workspace.publish_packages_to_npm()
    publish_peak = world.peak
    world.peak = 0
    await workspace.push_changes_to_github()

    assert publish_peak == 1
    assert world.peak == 3


async def test_verbs_reject_repos_outside_the_working_set(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    world.fail("clone", "A")
    workspace = make_workspace()
    result = await workspace.init(["acme/A", "acme/B"])
    (failed,) = result.failures
    world.calls.clear()

    with pytest.raises(ValueError, match="acme/A"):
        await workspace.start_new_branch("feature", [failed, *workspace.repos])

    assert world.calls_for("create_branch") == []


async def test_verbs_bind_repo_correlation(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    workspace = make_workspace()
    await workspace.init(["acme/*"])

    async def bound_repo(repo: WorkspaceRepo) -> str | None:
        return get_correlation_context().get("repo")

    result = await workspace.run(bound_repo, concurrency=3)
    await workspace.commit_changes("wip")

    assert {repo.name: value for repo, value in result.successes.items()} == {
        "A": "acme/A",
        "B": "acme/B",
        "C": "acme/C",
    }
    assert world.contexts[("commit", "C")] == {"repo": "acme/C"}


async def test_workspace_closes_the_connection_it_created(
    world: FakeWorld,
    make_workspace: Callable[..., Workspace],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    created: list[tuple[str | None, FakeGitHub]] = []

    def connect(token: str | None) -> FakeGitHub:
        connection = FakeGitHub(world)
        created.append((token, connection))
        return connection

    monkeypatch.setattr("crossrepo.workspace.GitHubConnection", connect)

    async with make_workspace(github=None, token="tok") as workspace:
        await workspace.init(["acme/A"])
        assert not created[0][1].closed

    assert [token for token, _ in created] == ["tok"]
    assert created[0][1].closed


async def test_workspace_leaves_an_injected_connection_open(
    world: FakeWorld, make_workspace: Callable[..., Workspace]
) -> None:
    github = FakeGitHub(world)

    async with make_workspace(github=github) as workspace:
        await workspace.init(["acme/A"])

    assert not github.closed
