"""Concurrent utilities - functional primitives for parallel execution."""

import contextvars
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Settled[O]:
    """Outcome of one unit of work: either a value or the error it raised."""

    value: O | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def map_async[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> Iterator[O]:
    """Apply function to items concurrently, preserving order.

    Automatically propagates contextvars to worker threads.

    Args:
        fn: Function to apply to each item.
        items: Items to process.
        concurrency: Max concurrent workers. None = len(items).

    Yields:
        Results in same order as input items.

    Example:
        >>> list(map_async(describe, instance_ids, concurrency=10))
        [state1, state2, ...]
    """
    items_list = list(items)
    if not items_list:
        return

    # A fresh context copy per task (ctx.run cannot be concurrent on same object)
    workers = concurrency if concurrency is not None else len(items_list)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]
        for future in futures:
            yield future.result()


def map_settled[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> list[Settled[O]]:
    """Apply function to items concurrently and wait for every one of them.

    Unlike ``map_async`` a failing item does not stop the others: each
    outcome is captured, and the list is only returned after all workers
    have joined.

    Example:
        >>> outcomes = map_settled(launch, range(3))
        >>> errors = [o.error for o in outcomes if not o.ok]
    """
    items_list = list(items)
    if not items_list:
        return []

    def settle(item: I) -> Settled[O]:
        try:
            return Settled(value=fn(item))
        except Exception as e:
            return Settled(error=e)

    return list(map_async(settle, items_list, concurrency))
