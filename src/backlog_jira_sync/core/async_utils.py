"""Async utilities for running blocking tracker calls in bounded batches."""

import asyncio
import logging
from typing import Any, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        issue = await run_sync(jira.get_issue, "PROJ-1")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive lists of at most *size* elements."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def run_batched(
    func: Callable[[T], R],
    items: Sequence[T],
    batch_size: int = 10,
) -> list[R]:
    """Apply a blocking *func* to every item, *batch_size* items at a time.

    Each batch runs concurrently in worker threads and completes before
    the next one starts, so at most *batch_size* calls are in flight.
    Exceptions propagate from the first failure; callers that need
    per-item isolation must catch inside *func*.

    Returns:
        Results in the same order as *items*.
    """
    results: list[R] = []
    batches = chunked(items, batch_size)
    for number, batch in enumerate(batches, start=1):
        logger.debug(
            "Running batch %d/%d (%d items)", number, len(batches), len(batch)
        )
        results.extend(
            await asyncio.gather(*(run_sync(func, item) for item in batch))
        )
    return results
