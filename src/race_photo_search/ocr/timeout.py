"""Bounded waits for calls into slow or hung backends."""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], timeout: float, *args, **kwargs) -> T:
    """Run ``fn`` on a worker thread and wait at most ``timeout`` seconds.

    The worker is abandoned, not killed, when the wait expires.

    Raises:
        TimeoutError: if ``fn`` does not finish in time.
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognition")
    try:
        future = pool.submit(fn, *args, **kwargs)
        return future.result(timeout=timeout)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
