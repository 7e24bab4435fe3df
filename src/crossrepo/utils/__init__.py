"""Utility exports for filesystem and batch concurrency helpers."""

from crossrepo.utils.concurrency import (
    BatchExecutor,
    BatchResult,
    OperationCancelledError,
    batch_process,
)
from crossrepo.utils.fs import atomic_write, ensure_directory, remove_tree, safe_delete

__all__ = [
    "BatchExecutor",
    "BatchResult",
    "OperationCancelledError",
    "atomic_write",
    "batch_process",
    "ensure_directory",
    "remove_tree",
    "safe_delete",
]
