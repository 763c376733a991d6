"""Async primitives for bounded worker dispatch."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancellationToken:
    """Cooperative stop signal shared by the executor and in-flight worker calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class DispatchSlots:
    """Counts in-flight dispatches against a fixed concurrency limit.

    The executor admits new work only while ``available`` is positive, so unlike a
    semaphore nothing ever blocks waiting for a slot.
    """

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self._limit - self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    def acquire(self) -> None:
        if self._in_use >= self._limit:
            raise RuntimeError("no dispatch slot available")
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1

    def snapshot(self) -> dict[str, int]:
        return {"limit": self._limit, "in_use": self._in_use, "peak": self._peak}


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when the deadline passes and ``asyncio.CancelledError``
    when ``cancel_token`` fires first. In both cases the inner task is cancelled and
    awaited before returning.
    """
    if timeout_seconds <= 0:
        _discard(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token if cancel_token is not None else CancellationToken()
    if token.is_cancelled:
        _discard(coroutine)
        raise asyncio.CancelledError("operation cancelled")

    work: asyncio.Task[T] = asyncio.ensure_future(coroutine)
    stop = asyncio.create_task(token.wait())
    try:
        done, _ = await asyncio.wait(
            {work, stop}, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in done:
            return work.result()

        work.cancel()
        with suppress(asyncio.CancelledError):
            await work
        if stop in done:
            raise asyncio.CancelledError("operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        stop.cancel()
        with suppress(asyncio.CancelledError):
            await stop


def _discard(awaitable: Awaitable[object]) -> None:
    # Close coroutines that were never scheduled to avoid "never awaited" warnings.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = ["CancellationToken", "DispatchSlots", "run_with_timeout"]
