"""Bounded-concurrency batch execution with per-item failure isolation."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

T = TypeVar("T")
R = TypeVar("R")


class OperationCancelledError(RuntimeError):
    """Recorded for an item whose operation was cancelled from the inside."""


@dataclass(frozen=True, slots=True)
class BatchResult(Generic[T, R]):
    """Partition of batch items into successes (with results) and failures (with errors).

    Both mappings are read-only views. Their key sets are disjoint and together
    cover every distinct input item exactly once.
    """

    successes: Mapping[T, R] = field(default_factory=lambda: MappingProxyType({}))
    failures: Mapping[T, Exception] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def ok(self) -> bool:
        return not self.failures

    def succeeded(self, order: Iterable[T]) -> tuple[T, ...]:
        """Return the successful items, filtered from ``order`` without reordering."""

        return tuple(item for item in order if item in self.successes)

    def failed(self, order: Iterable[T]) -> tuple[T, ...]:
        """Return the failed items, filtered from ``order`` without reordering."""

        return tuple(item for item in order if item in self.failures)


@dataclass(slots=True)
class BatchExecutor(Generic[T, R]):
    """Run one async operation over many items with a sliding concurrency window.

    At most ``concurrency`` operations are in flight; every completion starts the
    next pending item. A failing item never cancels, skips, or delays its
    siblings. Cancelling the caller cancels every in-flight operation and waits
    for it before re-raising, so no task outlives ``run``.
    """

    concurrency: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise ValueError("concurrency must be an integer")
        if self.concurrency <= 0:
            raise ValueError("concurrency must be > 0")

    async def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], Awaitable[R]],
    ) -> BatchResult[T, R]:
        queue = list(dict.fromkeys(items))
        successes: dict[T, R] = {}
        failures: dict[T, Exception] = {}
        if not queue:
            return BatchResult(MappingProxyType(successes), MappingProxyType(failures))

        in_flight: dict[asyncio.Task[R], T] = {}
        next_index = 0
        try:
            while next_index < len(queue) or in_flight:
                while next_index < len(queue) and len(in_flight) < self.concurrency:
                    item = queue[next_index]
                    next_index += 1
                    in_flight[asyncio.create_task(_invoke(operation, item))] = item

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    item = in_flight.pop(task)
                    if task.cancelled():
                        failures[item] = OperationCancelledError(
                            f"operation for {item!r} was cancelled"
                        )
                        continue
                    exc = task.exception()
                    if exc is None:
                        successes[item] = task.result()
                    elif isinstance(exc, Exception):
                        failures[item] = exc
                    else:
                        raise exc
        except BaseException:
            await _cancel_all(in_flight)
            raise

        return BatchResult(MappingProxyType(successes), MappingProxyType(failures))


async def batch_process(
    items: Iterable[T],
    operation: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = 1,
) -> BatchResult[T, R]:
    """Functional form of :meth:`BatchExecutor.run`."""

    executor: BatchExecutor[T, R] = BatchExecutor(concurrency)
    return await executor.run(items, operation)


async def _invoke(operation: Callable[[T], Awaitable[R]], item: T) -> R:
    # Calling inside the task captures exceptions raised before the first await.
    return await operation(item)


async def _cancel_all(tasks: Mapping[asyncio.Task[R], T]) -> None:
    for task in tasks:
        task.cancel()
    if tasks:
        with suppress(Exception):
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "BatchExecutor",
    "BatchResult",
    "OperationCancelledError",
    "batch_process",
]
