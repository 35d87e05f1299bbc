"""Wave-based bounded concurrency for fan-out over remote calls."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """Run `operation` over `items` in consecutive waves of at most `limit`.

    Each wave starts all of its operations together and waits for every one
    of them before the next wave starts, so no more than `limit` operations
    are in flight at once. Results are returned in input order.

    Failures are not caught here. `operation` must turn its own errors into
    values; an exception that escapes it propagates to the caller.

    Args:
        items: Work items
        operation: Coroutine function applied to each item
        limit: Wave size (must be >= 1)

    Returns:
        One result per item, in the same order as `items`
    """
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")

    results: list[R] = []
    for start in range(0, len(items), limit):
        wave = items[start:start + limit]
        results.extend(await asyncio.gather(*(operation(item) for item in wave)))
    return results
