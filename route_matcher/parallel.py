"""Partition / map / ordered-merge helpers over a thread pool.

Work is split into contiguous partitions, each partition runs on a worker of a
``ThreadPoolExecutor`` and the per-partition results are returned in input
order. Callers that aggregate state merge the partition results with an
associative combine, so scheduling never changes the output.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from . import config as _config
from .errors import OperationCancelled

T = TypeVar("T")
R = TypeVar("R")

_LOG = logging.getLogger(__name__)


def check_cancelled(cancel_event: threading.Event | None, where: str = "") -> None:
    """Raise :class:`OperationCancelled` when ``cancel_event`` is set."""

    if cancel_event is not None and cancel_event.is_set():
        _LOG.info("Cancellation requested%s", f" during {where}" if where else "")
        raise OperationCancelled(f"Operation cancelled{f' during {where}' if where else ''}")


def resolve_workers(max_workers: Optional[int]) -> int:
    if max_workers is None:
        return _config.MAX_WORKERS
    return max(1, int(max_workers))


def partition(
    items: Sequence[T], parts: int, min_size: int = 1
) -> List[Tuple[int, Sequence[T]]]:
    """Split ``items`` into at most ``parts`` contiguous ``(offset, chunk)`` pairs."""

    total = len(items)
    if total == 0:
        return []
    parts = max(1, min(parts, total // max(1, min_size) or 1))
    size, extra = divmod(total, parts)
    chunks: List[Tuple[int, Sequence[T]]] = []
    start = 0
    for idx in range(parts):
        end = start + size + (1 if idx < extra else 0)
        chunks.append((start, items[start:end]))
        start = end
    return chunks


def map_partitions(
    func: Callable[[int, Sequence[T]], R],
    items: Sequence[T],
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
    min_partition_size: Optional[int] = None,
) -> List[R]:
    """Run ``func(offset, chunk)`` per partition and return results in partition order."""

    workers = resolve_workers(max_workers)
    min_size = min_partition_size or _config.PARTITION_SIZE
    chunks = partition(items, workers, min_size=min_size)
    check_cancelled(cancel_event, "partitioning")
    if workers == 1 or len(chunks) <= 1:
        results: List[R] = []
        for offset, chunk in chunks:
            check_cancelled(cancel_event)
            results.append(func(offset, chunk))
        return results

    with ThreadPoolExecutor(max_workers=min(workers, len(chunks))) as executor:
        futures: List[Future] = [
            executor.submit(func, offset, chunk) for offset, chunk in chunks
        ]
        try:
            return [fut.result() for fut in futures]
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise


def partitioned_map(
    func: Callable[[T], R],
    items: Sequence[T],
    *,
    max_workers: Optional[int] = None,
    cancel_event: threading.Event | None = None,
    min_partition_size: Optional[int] = None,
) -> List[R]:
    """Apply ``func`` to every item and return the results in input order.

    Cancellation is checked between items inside every partition.
    """

    def run_chunk(_offset: int, chunk: Sequence[T]) -> List[R]:
        out: List[R] = []
        for item in chunk:
            check_cancelled(cancel_event)
            out.append(func(item))
        return out

    merged: List[R] = []
    for chunk_results in map_partitions(
        run_chunk,
        items,
        max_workers=max_workers,
        cancel_event=cancel_event,
        min_partition_size=min_partition_size,
    ):
        merged.extend(chunk_results)
    return merged


def ordered_map(
    func: Callable[[T], R],
    items: Sequence[T],
    *,
    executor: Optional[ThreadPoolExecutor] = None,
) -> List[R]:
    """Map ``func`` over ``items`` on an existing executor, preserving order.

    Without an executor the items are processed inline.
    """

    if executor is None or len(items) <= 1:
        return [func(item) for item in items]
    futures = [executor.submit(func, item) for item in items]
    return [fut.result() for fut in futures]


__all__ = [
    "check_cancelled",
    "resolve_workers",
    "partition",
    "map_partitions",
    "partitioned_map",
    "ordered_map",
]
