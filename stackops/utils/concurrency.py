"""Fan-out helpers over a thread pool.

boto3 clients are thread-safe, so independent provider calls run on a
ThreadPoolExecutor. Results are written once per task and read only after
the task completes.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 10


def run_all(
    fn: Callable[[T], R],
    items: Iterable[T],
    max_workers: Optional[int] = None,
) -> list[R]:
    """Apply fn to every item concurrently, failing fast.

    Returns:
        Results in input order

    Raises:
        The first exception raised by any task
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max_workers or min(DEFAULT_MAX_WORKERS, len(items))) as executor:
        futures = [executor.submit(fn, item) for item in items]
        for future in as_completed(futures):
            error = future.exception()
            if error is not None:
                for pending in futures:
                    pending.cancel()
                raise error
        return [future.result() for future in futures]


def collect_all(
    fn: Callable[[T], R],
    items: Iterable[T],
    max_workers: Optional[int] = None,
) -> list[tuple[T, Optional[R], Optional[Exception]]]:
    """Apply fn to every item concurrently without letting one failure block the rest.

    Returns:
        (item, result, error) tuples in input order; exactly one of result/error is meaningful
    """
    items = list(items)
    if not items:
        return []

    outcomes: dict[int, tuple[T, Optional[R], Optional[Exception]]] = {}
    with ThreadPoolExecutor(max_workers=max_workers or min(DEFAULT_MAX_WORKERS, len(items))) as executor:
        futures = {executor.submit(fn, item): i for i, item in enumerate(items)}
        for future in as_completed(futures):
            i = futures[future]
            error = future.exception()
            if error is not None:
                outcomes[i] = (items[i], None, error)
            else:
                outcomes[i] = (items[i], future.result(), None)

    return [outcomes[i] for i in range(len(items))]
