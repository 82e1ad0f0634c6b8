"""Ordered, bounded fan-out over a thread pool.

``p_map(items, fn, concurrency=n)`` calls ``fn`` on every item with at most
``n`` calls in flight and returns the results in input order. Budget
aggregation uses it to run independent per-category spend lookups side by
side; the lookups are I/O against the store, so threads are enough.

Error handling:

- ``stop_on_error=True`` (default): the first failure propagates and work
  not yet started is cancelled.
- ``stop_on_error=False``: every item runs; failures are raised together as
  an ``ExceptionGroup`` at the end.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

MAX_CONCURRENCY = 32


def resolve_concurrency(requested: int | None, *, default: int = 4) -> int:
    """Clamp a requested worker count to ``[1, MAX_CONCURRENCY]``."""

    if requested is None:
        requested = default
    return max(1, min(int(requested), MAX_CONCURRENCY))


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with bounded concurrency, keeping order."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    index_of: dict[Future[OutT], int] = {}

    def _submit_next(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        try:
            idx, item = next(pending)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        index_of[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future[OutT]] = set()
        while len(active) < concurrency:
            fut = _submit_next(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = index_of.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as exc:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(exc)
            # Keep the window full: one new submission per completion.
            for _ in range(len(done)):
                fut = _submit_next(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in sorted(results)]


__all__ = ["MAX_CONCURRENCY", "resolve_concurrency", "p_map"]
