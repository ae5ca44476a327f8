"""
Order-preserving map over independent work units.

Per-feature standardization and per-batch shrinkage read shared inputs and
return their own results; the caller scatters those results into
pre-allocated arrays. Threads share memory, so inputs are never copied.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, TypeVar

__all__ = ['parallel_map']

T = TypeVar("T")
R = TypeVar("R")


def parallel_map(func: Callable[[T], R], items: Iterable[T], n_jobs: int = 1) -> List[R]:
    """
    Apply `func` to every item, in input order.

    Runs sequentially when n_jobs == 1 or there is at most one item. The first
    exception raised by any unit propagates to the caller.
    """
    items = list(items)
    if n_jobs <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=min(n_jobs, len(items))) as executor:
        return list(executor.map(func, items))
