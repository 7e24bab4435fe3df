"""
crossrepo — integration layer

Purpose
- Single-repo collaborators the workspace pipeline orchestrates: git and npm
  sessions, the GitHub connection, Bower manifests, and process primitives.

Functional requirements
- Every call targets exactly one checkout (or one API request); no batching here.
"""

from crossrepo.integration.base import (
    PackageSession,
    RepoHostingConnection,
    VersionControlSession,
)
from crossrepo.integration.bower import ManifestError, merge_bower_manifests, read_bower_manifest
from crossrepo.integration.git import GitError, GitRepo
from crossrepo.integration.github import (
    GitHubConnection,
    GitHubError,
    GitHubRepo,
    GitHubRepoReference,
    parse_repo_pattern,
)
from crossrepo.integration.npm import NpmPackage
from crossrepo.integration.process import (
    CommandError,
    CommandRunner,
    ExecResult,
    OutputLimitError,
    command_exists,
    run_command,
)

__all__ = [
    "CommandError",
    "CommandRunner",
    "ExecResult",
    "GitError",
    "GitHubConnection",
    "GitHubError",
    "GitHubRepo",
    "GitHubRepoReference",
    "GitRepo",
    "ManifestError",
    "NpmPackage",
    "OutputLimitError",
    "PackageSession",
    "RepoHostingConnection",
    "VersionControlSession",
    "command_exists",
    "merge_bower_manifests",
    "parse_repo_pattern",
    "read_bower_manifest",
    "run_command",
]
