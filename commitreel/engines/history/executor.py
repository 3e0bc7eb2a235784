"""Fixed-size worker pool over a list of inputs, results kept in input order."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

log = structlog.get_logger("commitreel.engine")

ItemT = TypeVar("ItemT")
T = TypeVar("T")


@dataclass(frozen=True)
class TaskResult(Generic[T]):
    """Either a value or the exception the task raised."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def run_all(
    items: Sequence[ItemT],
    concurrency: int,
    task_fn: Callable[[ItemT, int], Awaitable[T]],
) -> list[TaskResult[T]]:
    """Run ``task_fn(item, index)`` for every item with at most *concurrency* in flight.

    ``result[i]`` always belongs to ``items[i]``. A failing task only fills its
    own slot; siblings keep running and the call returns once every slot is
    filled.
    """
    if concurrency <= 0:
        raise ValueError(f"concurrency must be positive, got {concurrency}")

    results: list[TaskResult[T] | None] = [None] * len(items)
    next_index = 0

    async def _worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            # No await between the check and the increment: claims are exclusive.
            index = next_index
            next_index += 1
            try:
                value = await task_fn(items[index], index)
            except Exception as exc:
                log.warning(
                    "executor.task_failed",
                    index=index,
                    error=f"{type(exc).__name__}: {exc}",
                )
                results[index] = TaskResult(error=exc)
            else:
                results[index] = TaskResult(value=value)

    workers = min(concurrency, len(items))
    await asyncio.gather(*(_worker() for _ in range(workers)))
    return results  # type: ignore[return-value]
