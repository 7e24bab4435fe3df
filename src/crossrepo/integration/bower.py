"""Bower manifest reading and workspace-wide manifest merging."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from crossrepo.constants import BOWER_MANIFEST_FILENAME, WORKSPACE_PACKAGE_NAME

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")


class ManifestError(ValueError):
    """Raised when a ``bower.json`` cannot be read or has the wrong shape."""


def read_bower_manifest(repo_dir: Path | str) -> dict[str, Any]:
    """Read ``bower.json`` from ``repo_dir``; a missing manifest reads as ``{}``."""

    path = Path(repo_dir) / BOWER_MANIFEST_FILENAME
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ManifestError(f"unable to read {path}: {exc}") from exc
    except ValueError as exc:
        raise ManifestError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ManifestError(f"manifest root must be an object: {path}")
    for section in (*_DEPENDENCY_SECTIONS, "resolutions"):
        if section in payload and not isinstance(payload[section], dict):
            raise ManifestError(f"{section} must be an object: {path}")
    return payload


def merge_bower_manifests(manifests: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Merge per-repo manifests into one workspace manifest.

    The result depends on the union of every manifest's ``dependencies`` and
    ``devDependencies`` and carries the union of their ``resolutions``. Later
    manifests win when two declare the same package.
    """

    dependencies: dict[str, str] = {}
    resolutions: dict[str, str] = {}
    for manifest in manifests:
        for section in _DEPENDENCY_SECTIONS:
            dependencies.update(_string_map(manifest, section))
        resolutions.update(_string_map(manifest, "resolutions"))

    return {
        "name": WORKSPACE_PACKAGE_NAME,
        "dependencies": dependencies,
        "resolutions": resolutions,
    }


def _string_map(manifest: Mapping[str, Any], section: str) -> dict[str, str]:
    raw = manifest.get(section)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        name = manifest.get("name", "<unnamed>")
        raise ManifestError(f"{section} in manifest {name!r} must be an object")
    return {str(key): str(value) for key, value in raw.items()}


__all__ = ["ManifestError", "merge_bower_manifests", "read_bower_manifest"]
