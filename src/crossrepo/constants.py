"""Stable constants shared across the workspace, integration, and CLI layers."""

from __future__ import annotations

from typing import Final

# Concurrency presets for batch operations.
FS_CONCURRENCY_PRESET: Final[int] = 6
GITHUB_CONCURRENCY_PRESET: Final[int] = 12
NPM_PUBLISH_CONCURRENCY_PRESET: Final[int] = 2

# Commands that must be on PATH before a workspace can be initialized.
REQUIRED_COMMANDS: Final[tuple[str, ...]] = ("git", "bower", "npm")

# Workspace-level files written into the workspace root.
BOWERRC_FILENAME: Final[str] = ".bowerrc"
BOWER_MANIFEST_FILENAME: Final[str] = "bower.json"
WORKSPACE_PACKAGE_NAME: Final[str] = "crossrepo-workspace"

# Subprocess output cap (bytes, stdout and stderr counted separately).
DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 1000 * 1024

DEFAULT_GITHUB_API_URL: Final[str] = "https://api.github.com"
DEFAULT_DIST_TAG: Final[str] = "latest"

__all__ = [
    "BOWERRC_FILENAME",
    "BOWER_MANIFEST_FILENAME",
    "DEFAULT_DIST_TAG",
    "DEFAULT_GITHUB_API_URL",
    "DEFAULT_MAX_OUTPUT_BYTES",
    "FS_CONCURRENCY_PRESET",
    "GITHUB_CONCURRENCY_PRESET",
    "NPM_PUBLISH_CONCURRENCY_PRESET",
    "REQUIRED_COMMANDS",
    "WORKSPACE_PACKAGE_NAME",
]
