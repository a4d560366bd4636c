"""Bounded parallelism for independent remote reads.

Sibling sub-issue fetches and staleness checks have no ordering between them,
so they run on a small ``ThreadPoolExecutor``. Anything with a
parent-before-child dependency (every push mutation) stays sequential and
never goes through here.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TypeVar

from .logging import get_logger

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ConcurrencyConfig:
    """Configuration for concurrency settings."""

    enabled: bool = True
    max_workers: int = 4


def get_optimal_worker_count(item_count: int, max_workers: int = 4) -> int:
    """Get optimal worker count based on how many independent calls are queued."""
    small_threshold = 2
    medium_threshold = 8
    if item_count <= small_threshold:
        return 1
    if item_count <= medium_threshold:
        return min(2, max_workers)
    return max(1, max_workers)


def bounded_map(
    fn: Callable[[T], R],
    items: Sequence[T],
    config: ConcurrencyConfig | None = None,
    *,
    operation: str = "bounded_map",
) -> list[R]:
    """Apply ``fn`` to every item, preserving input order in the result.

    Exceptions raised by ``fn`` propagate; callers that need per-item failure
    isolation catch inside ``fn``.
    """
    config = config or ConcurrencyConfig()
    workers = get_optimal_worker_count(len(items), config.max_workers)
    if not config.enabled or workers <= 1:
        return [fn(item) for item in items]

    logger = get_logger()
    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="issuetree") as pool:
        results = list(pool.map(fn, items))
    logger.log_performance(
        operation,
        (time.perf_counter() - start) * 1000,
        item_count=len(items),
        max_workers=workers,
    )
    return results


__all__ = ["ConcurrencyConfig", "bounded_map", "get_optimal_worker_count"]
