"""
Small shared utilities: timing, request deadlines, bounded blocking calls.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from typing import Any, Callable, Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


class Deadline:
    """Wall-clock budget shared by every step of one request."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining <= 0.0

    def clamp(self, timeout: float) -> float:
        """Return *timeout* shortened so it never outlives the deadline."""
        return min(timeout, self.remaining)


def call_with_timeout(fn: Callable[..., Any], *args: Any, timeout: float) -> Any:
    """Run ``fn(*args)`` in a worker thread and wait at most *timeout* seconds.

    Raises ``TimeoutError`` when the call does not finish in time.  The worker
    is abandoned rather than joined, so a stuck call never blocks the caller.
    Exceptions raised by *fn* propagate unchanged.
    """
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as exc:
            future.cancel()
            raise TimeoutError(f"call did not finish within {timeout:.1f}s") from exc
    finally:
        pool.shutdown(wait=False)
