"""Bounded, order-preserving parallel map over a thread pool.

``p_map(items, mapper, concurrency=n)`` runs at most ``n`` mapper calls at once
and returns results in input order. The first mapper error cancels work that
has not started yet and is re-raised unchanged.

Used by the ingestion flow to classify the rows of one batch concurrently;
each mapper call owns its own database session.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` in flight."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if not items:
        return []
    if concurrency == 1 or len(items) == 1:
        return [mapper(item) for item in items]

    workers = min(concurrency, len(items))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures: list[Future[OutT]] = [pool.submit(mapper, item) for item in items]
        done, _pending = wait(futures, return_when=FIRST_EXCEPTION)
        for fut in done:
            exc = fut.exception()
            if exc is not None:
                pool.shutdown(wait=False, cancel_futures=True)
                raise exc
        # No failure so far; collect in input order (re-raises late failures).
        return [fut.result() for fut in futures]


__all__ = ["p_map"]
