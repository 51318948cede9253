"""Bounded worker pool for the I/O-bound resolution stages.

``size`` threads share one cursor; each claims the next unprocessed index under
a lock and writes its result into a pre-sized list at that index. Completion
order is free, output order always mirrors input order.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class _Cursor:
    def __init__(self, limit: int):
        self._next = 0
        self._limit = limit
        self._lock = threading.Lock()

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._next >= self._limit:
                return None
            i = self._next
            self._next += 1
            return i


def run_bounded(
    items: Sequence[T],
    work: Callable[[T], R],
    *,
    size: int,
    fallback: Callable[[T], R],
    name: str = "pool",
) -> List[R]:
    """Apply ``work`` to every item with at most ``size`` concurrent workers.

    An exception escaping ``work`` is logged and replaced by ``fallback(item)``,
    so one bad record never takes the batch down.
    """
    n = len(items)
    results: List[Optional[R]] = [None] * n
    if n == 0:
        return []
    cursor = _Cursor(n)

    def worker() -> None:
        while True:
            i = cursor.claim()
            if i is None:
                return
            item = items[i]
            try:
                results[i] = work(item)
            except Exception:
                logger.exception("[%s] item %d failed; passing through", name, i)
                results[i] = fallback(item)

    workers = max(1, min(size, n))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name) as executor:
        futures = [executor.submit(worker) for _ in range(workers)]
        for f in futures:
            f.result()
    return results  # type: ignore[return-value]
