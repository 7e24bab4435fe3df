"""Shared fixtures: an isolated git environment and local bare "origin" repositories."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

import pytest
import structlog

if TYPE_CHECKING:
    from pathlib import Path

MakeOrigin = Callable[..., "Path"]


def run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = (
            f"git command failed: git {' '.join(args)}\n"
            f"stdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        )
        raise AssertionError(msg)
    return completed


@pytest.fixture
def git_cli() -> Callable[..., subprocess.CompletedProcess[str]]:
    return run_git


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    structlog.reset_defaults()


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Crossrepo Test")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "crossrepo-test@example.com")


@pytest.fixture
def make_origin(tmp_path: Path, git_env: None) -> MakeOrigin:
    """Create a bare repository under ``tmp_path/origins`` seeded with ``files``."""

    def factory(
        name: str,
        files: Mapping[str, str] | None = None,
        *,
        branch: str = "main",
    ) -> Path:
        seed = tmp_path / "seeds" / name
        seed.mkdir(parents=True)
        run_git(seed, "init", "--quiet", f"--initial-branch={branch}")
        for relative, content in (files or {"README.md": f"# {name}\n"}).items():
            target = seed / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        run_git(seed, "add", "--all")
        run_git(seed, "commit", "--quiet", "-m", "initial")

        origin = tmp_path / "origins" / f"{name}.git"
        origin.parent.mkdir(parents=True, exist_ok=True)
        run_git(tmp_path, "clone", "--quiet", "--bare", str(seed), str(origin))
        return origin

    return factory
