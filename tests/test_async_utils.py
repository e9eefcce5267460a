"""
Tests for async_utils module.

Covers run_sync, chunked and run_batched.
"""

import threading
import time

import pytest

from backlog_jira_sync.core.async_utils import chunked, run_batched, run_sync


def _sync_add(a: int, b: int) -> int:
    return a + b


async def test_run_sync_calls_function():
    """run_sync delegates to a worker thread with correct args."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_passes_kwargs():
    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw_func, name="world") == "hello world"


async def test_run_sync_uses_worker_thread():
    main = threading.get_ident()
    assert await run_sync(threading.get_ident) != main


class TestChunked:
    def test_even_split(self):
        assert chunked([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder(self):
        assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]

    def test_empty(self):
        assert chunked([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError, match="batch size"):
            chunked([1], 0)


class TestRunBatched:
    async def test_preserves_order(self):
        def slow_square(n: int) -> int:
            # later items finish first within a batch
            time.sleep(0.01 * (5 - n))
            return n * n

        assert await run_batched(slow_square, [1, 2, 3, 4], batch_size=4) == [
            1,
            4,
            9,
            16,
        ]

    async def test_bounded_concurrency(self):
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def work(item: int) -> int:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.02)
            with lock:
                in_flight -= 1
            return item

        result = await run_batched(work, list(range(7)), batch_size=3)

        assert result == list(range(7))
        assert peak <= 3

    async def test_batches_run_in_sequence(self):
        started: list[int] = []
        finished: list[int] = []

        def work(item: int) -> int:
            started.append(item)
            time.sleep(0.01)
            finished.append(item)
            return item

        await run_batched(work, [0, 1, 2, 3], batch_size=2)

        # the second batch only starts after the first one finished
        assert set(started[2:]) == {2, 3}
        assert set(finished[:2]) == {0, 1}

    async def test_exception_propagates(self):
        def fail(item: int) -> int:
            raise RuntimeError(f"item {item}")

        with pytest.raises(RuntimeError, match="item"):
            await run_batched(fail, [1], batch_size=1)

    async def test_empty_input(self):
        assert await run_batched(_sync_add, [], batch_size=5) == []
