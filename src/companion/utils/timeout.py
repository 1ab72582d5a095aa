"""Bounded calls into external services."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], timeout: Optional[float], *args: Any, **kwargs: Any) -> T:
    """Run ``fn`` and give up after ``timeout`` seconds.

    ``None`` or a non-positive timeout calls ``fn`` inline. On expiry a
    :class:`TimeoutError` is raised; the worker thread is abandoned, not killed.
    """
    if not timeout or timeout <= 0:
        return fn(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise TimeoutError(f"{getattr(fn, '__qualname__', fn)!s} timed out after {timeout}s") from None
    finally:
        executor.shutdown(wait=False)
