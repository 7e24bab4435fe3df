"""
crossrepo — filesystem utilities

Purpose
- Atomic writes for workspace-level files (``.bowerrc``, ``bower.json``).
- Guarded recursive removal that refuses to leave the workspace root.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "ensure_directory",
    "remove_tree",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Write ``data`` to ``path`` through a sibling temp file and ``os.replace``."""

    target = Path(path)
    parent = target.parent.resolve(strict=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(parent))
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def ensure_directory(path: PathLike) -> bool:
    """Create ``path`` (and parents) if missing; return ``True`` when it was created."""

    target = Path(path)
    if target.is_dir():
        return False
    target.mkdir(parents=True, exist_ok=True)
    return True


def remove_tree(path: PathLike) -> bool:
    """Recursively remove ``path`` if it exists; return ``True`` when something was removed.

    Symlinks are unlinked, never followed.
    """

    target = Path(path)
    if target.is_symlink() or target.is_file():
        target.unlink()
        return True
    if not target.exists():
        return False
    shutil.rmtree(target)
    return True


def safe_delete(path: PathLike, workspace_root: PathLike) -> None:
    """Delete ``path`` only if it lies strictly inside ``workspace_root``."""

    root = Path(workspace_root).resolve(strict=True)
    if not root.is_dir():
        raise NotADirectoryError(f"{root!s} is not a directory")

    target = Path(path)
    candidate = target.parent.resolve(strict=True) / target.name
    if candidate == root or not _is_relative_to(candidate, root):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    if not target.is_symlink() and not _is_relative_to(target.resolve(strict=True), root):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    remove_tree(target)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True
