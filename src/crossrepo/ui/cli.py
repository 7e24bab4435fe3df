"""Command-line interface router for crossrepo."""

from __future__ import annotations

import argparse
import asyncio
import json
import secrets
import sys
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from crossrepo.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    resolve_github_token,
)
from crossrepo.constants import DEFAULT_DIST_TAG
from crossrepo.integration.github import GitHubConnection, GitHubError, parse_repo_pattern
from crossrepo.integration.process import ExecResult, run_command
from crossrepo.observability.logging import setup_logging, shutdown_logging
from crossrepo.ui.render import CLIRenderer, create_renderer
from crossrepo.utils.concurrency import BatchResult
from crossrepo.workspace import (
    ConcurrencyPresets,
    DependencyInstallError,
    EnvironmentValidationError,
    InitResult,
    Workspace,
    WorkspaceRepo,
)

EXIT_PARTIAL_FAILURE: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_ENVIRONMENT_ERROR: Final[int] = 3

Verb = Callable[[Workspace], Awaitable[BatchResult[WorkspaceRepo, Any]]]


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Everything a command produced, ready for rendering."""

    command: str
    run_id: str
    workspace_dir: str
    init: InitResult
    verb: BatchResult[WorkspaceRepo, Any] | None = None

    @property
    def ok(self) -> bool:
        verb_ok = self.verb is None or self.verb.ok
        return verb_ok and not self.init.failures and not self.init.unresolved


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for every workspace command."""

    parser = argparse.ArgumentParser(
        prog="crossrepo",
        description=(
            "crossrepo — check out many GitHub repos side by side and operate on them as one.\n\n"
            "Common workflows:\n"
            "  crossrepo init --repo org/*                      Clone/update and link\n"
            "  crossrepo branch fix-x --repo org/a --repo org/b Start a branch everywhere\n"
            "  crossrepo commit -m 'msg' --repo org/*           Commit everywhere\n"
            "  crossrepo run --repo org/* -- npm test           Run a command in each repo\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo",
        dest="repos",
        action="append",
        required=True,
        metavar="PATTERN",
        help="Repository to include: owner/name, owner/glob*, optionally suffixed with #ref.",
    )
    common.add_argument(
        "--exclude",
        dest="excludes",
        action="append",
        default=[],
        metavar="NAME",
        help="owner/name to drop after pattern expansion (case-insensitive).",
    )
    common.add_argument(
        "--dir",
        dest="workspace_dir",
        default=None,
        help="Workspace root directory (default: [workspace].dir from config).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to crossrepo TOML config (default: ./crossrepo.toml if present).",
    )
    common.add_argument(
        "--fresh",
        action="store_true",
        default=False,
        help="Delete the whole workspace directory before initializing.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log per-repo progress events.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init", parents=[common], help="Clone or update every repo and link dependencies"
    )
    init_parser.set_defaults(handler=_cmd_init)

    branch_parser = subparsers.add_parser(
        "branch", parents=[common], help="Create and switch to a new branch in every repo"
    )
    branch_parser.add_argument("branch_name", help="Name of the branch to create")
    branch_parser.set_defaults(handler=_cmd_branch)

    commit_parser = subparsers.add_parser(
        "commit", parents=[common], help="Commit all pending changes in every repo"
    )
    commit_parser.add_argument("-m", "--message", required=True, help="Commit message")
    commit_parser.set_defaults(handler=_cmd_commit)

    push_parser = subparsers.add_parser(
        "push", parents=[common], help="Push each repo's current branch to origin"
    )
    push_parser.add_argument(
        "--to-branch",
        dest="push_to_branch",
        default=None,
        help="Remote branch name (default: same as the local branch).",
    )
    push_parser.add_argument("--force", action="store_true", default=False, help="Force push")
    push_parser.set_defaults(handler=_cmd_push)

    publish_parser = subparsers.add_parser(
        "publish", parents=[common], help="Publish every repo's package to npm"
    )
    publish_parser.add_argument(
        "--tag",
        dest="dist_tag",
        default=DEFAULT_DIST_TAG,
        help=f"npm dist-tag (default: {DEFAULT_DIST_TAG})",
    )
    publish_parser.set_defaults(handler=_cmd_publish)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run a command inside every repo",
        description=(
            "Run an arbitrary command in each repo directory.\n\n"
            "Examples:\n"
            "  crossrepo run --repo org/* -- npm test\n"
            "  crossrepo run --repo org/* --concurrency 4 -- git status --short\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--concurrency",
        type=_positive_int,
        default=1,
        help="Repos processed at once (default: 1).",
    )
    run_parser.add_argument("argv", nargs=argparse.REMAINDER, help="Command and its arguments")
    run_parser.set_defaults(handler=_cmd_run)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace) -> int:
    return _execute(args, None)


def _cmd_branch(args: argparse.Namespace) -> int:
    name = _require_str(args.branch_name, "branch name")
    return _execute(args, lambda workspace: workspace.start_new_branch(name))


def _cmd_commit(args: argparse.Namespace) -> int:
    message = _require_str(args.message, "commit message")
    return _execute(args, lambda workspace: workspace.commit_changes(message))


def _cmd_push(args: argparse.Namespace) -> int:
    target = args.push_to_branch
    if target is not None:
        target = _require_str(target, "--to-branch")
    force = bool(args.force)
    return _execute(
        args,
        lambda workspace: workspace.push_changes_to_github(push_to_branch=target, force=force),
    )


def _cmd_publish(args: argparse.Namespace) -> int:
    dist_tag = _require_str(args.dist_tag, "--tag")
    return _execute(args, lambda workspace: workspace.publish_packages_to_npm(dist_tag=dist_tag))


def _cmd_run(args: argparse.Namespace) -> int:
    command = list(args.argv)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise CLIError("run requires a command after '--'", exit_code=EXIT_CONFIG_ERROR)
    program, rest = command[0], command[1:]

    async def in_repo(repo: WorkspaceRepo) -> ExecResult:
        return await run_command(repo.dir, program, rest)

    return _execute(
        args,
        lambda workspace: workspace.run(in_repo, concurrency=args.concurrency),
    )


def _execute(args: argparse.Namespace, verb: Verb | None) -> int:
    patterns = tuple(args.repos)
    for pattern in patterns:
        try:
            parse_repo_pattern(pattern)
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc

    config = _load_effective_config(args)
    run_id = _new_run_id()
    setup_logging(config["observability"], run_id=run_id, verbose=bool(args.verbose))
    try:
        init, verb_result = asyncio.run(
            _run_workspace(config, patterns, tuple(args.excludes), args, verb)
        )
    except (EnvironmentValidationError, DependencyInstallError, GitHubError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_ENVIRONMENT_ERROR) from exc
    finally:
        shutdown_logging()

    outcome = CommandOutcome(
        command=str(args.command),
        run_id=run_id,
        workspace_dir=str(config["workspace"]["dir"]),
        init=init,
        verb=verb_result,
    )
    if args.json:
        _emit_json(outcome_payload(outcome))
    else:
        render_outcome(_get_renderer(args), outcome)
    return 0 if outcome.ok else EXIT_PARTIAL_FAILURE


async def _run_workspace(
    config: Mapping[str, Any],
    patterns: Sequence[str],
    excludes: Sequence[str],
    args: argparse.Namespace,
    verb: Verb | None,
) -> tuple[InitResult, BatchResult[WorkspaceRepo, Any] | None]:
    concurrency = config["concurrency"]
    async with GitHubConnection(
        resolve_github_token(config), api_url=config["github"]["api_url"]
    ) as github:
        workspace = Workspace(
            config["workspace"]["dir"],
            github=github,
            concurrency=ConcurrencyPresets(
                filesystem=concurrency["filesystem"],
                github=concurrency["github"],
                npm_publish=concurrency["npm_publish"],
            ),
        )
        init = await workspace.init(
            patterns, excludes, fresh=bool(args.fresh), verbose=bool(args.verbose)
        )
        verb_result = await verb(workspace) if verb is not None else None
    return init, verb_result


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def outcome_payload(outcome: CommandOutcome) -> dict[str, object]:
    """Build the deterministic JSON document for ``--json`` output."""

    init = outcome.init
    payload: dict[str, object] = {
        "command": outcome.command,
        "run_id": outcome.run_id,
        "workspace_dir": outcome.workspace_dir,
        "ok": outcome.ok,
        "repos": [
            {"name": repo.name, "full_name": repo.github.full_name, "dir": repo.dir.as_posix()}
            for repo in init.repos
        ],
        "init_failures": [
            {
                "repo": repo.github.full_name,
                "phase": _failed_phase(init, repo),
                "error": str(error),
                "error_type": type(error).__name__,
            }
            for repo, error in init.failures.items()
        ],
        "unresolved": [
            {"repo": item.requested_name, "reason": item.reason} for item in init.unresolved
        ],
    }
    if outcome.verb is not None:
        payload["results"] = [
            _result_entry(repo, outcome.verb) for repo in init.repos
        ]
    return payload


def render_outcome(renderer: CLIRenderer, outcome: CommandOutcome) -> None:
    """Render the per-repo summary as plain text."""

    init = outcome.init
    renderer.kv("Workspace", outcome.workspace_dir)
    renderer.kv("Run", outcome.run_id)
    renderer.kv("Repos ready", len(init.repos))

    if init.unresolved:
        renderer.section("Not found:")
        for item in init.unresolved:
            renderer.skip(f"{item.requested_name}: {item.reason}")

    if init.failures:
        renderer.section("Initialization failures:")
        for repo, error in init.failures.items():
            renderer.fail(f"{repo.github.full_name} [{_failed_phase(init, repo)}]: {error}")

    if outcome.verb is not None:
        renderer.section(f"{outcome.command}:")
        for repo in init.repos:
            entry = _result_entry(repo, outcome.verb)
            if entry["ok"]:
                renderer.ok(repo.github.full_name)
                if renderer.verbose and entry.get("stdout"):
                    renderer.items(str(entry["stdout"]).splitlines(), prefix="  ")
            elif "error" in entry:
                renderer.fail(f"{repo.github.full_name}: {entry['error']}")
            else:
                renderer.skip(repo.github.full_name)
    elif init.repos and renderer.verbose:
        renderer.section("Repos:")
        renderer.items([repo.github.full_name for repo in init.repos])


def _result_entry(
    repo: WorkspaceRepo, results: BatchResult[WorkspaceRepo, Any]
) -> dict[str, object]:
    entry: dict[str, object] = {"repo": repo.github.full_name}
    if repo in results.successes:
        entry["ok"] = True
        value = results.successes[repo]
        if isinstance(value, ExecResult):
            entry["stdout"] = value.stdout
    elif repo in results.failures:
        entry["ok"] = False
        entry["error"] = str(results.failures[repo])
    else:
        entry["ok"] = False
    return entry


def _failed_phase(init: InitResult, repo: WorkspaceRepo) -> str:
    for outcome in init.phases:
        if repo not in outcome.repos:
            return outcome.phase.value
    return "unknown"


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(args.no_color), verbose=bool(args.verbose))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(
            args.config_path,
            cli_overrides={"workspace.dir": args.workspace_dir},
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


def _new_run_id() -> str:
    return f"run-{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{secrets.token_hex(4)}"


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"{name} must not be empty", exit_code=EXIT_CONFIG_ERROR)
    return value.strip()


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    return value


__all__ = [
    "CLIError",
    "CommandOutcome",
    "build_parser",
    "outcome_payload",
    "render_outcome",
    "run_cli",
]
