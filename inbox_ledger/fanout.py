"""Bounded thread fan-out for independent I/O-bound reads.

``fan_out(items, fn, concurrency=N)`` runs ``fn`` over ``items`` with at most
``N`` calls in flight and collects the results in completion order.

- ``fn`` may return :data:`SKIP` to drop an item (used for per-message
  failures that should not abort the batch).
- Any exception raised by ``fn`` aborts the batch: not-yet-started work is
  cancelled and the exception propagates to the caller unchanged.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "SKIP"


SKIP: object = _Skip()


def fan_out(
    items: Iterable[InT],
    fn: Callable[[InT], OutT | object],
    *,
    concurrency: int,
) -> list[OutT]:
    """Map ``items`` through ``fn`` concurrently; return non-skipped results.

    Ordering of the returned list follows completion, not input order.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = iter(items)
    out: list[OutT] = []

    def _submit(pool: ThreadPoolExecutor, active: set[Future]) -> bool:
        try:
            item = next(it)
        except StopIteration:
            return False
        active.add(pool.submit(fn, item))
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            if not _submit(pool, active):
                break

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                try:
                    val = fut.result()
                except Exception:
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise
                if val is not SKIP:
                    out.append(val)  # type: ignore[arg-type]
            # Keep the window full.
            for _ in range(len(done)):
                if not _submit(pool, active):
                    break

    return out


__all__ = ["SKIP", "fan_out"]
