"""Single-flight wrapper for expensive lookups."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


def _retrieve_exception(task: asyncio.Future[object]) -> None:
    # Every caller may have been cancelled before the lookup failed.
    if not task.cancelled():
        task.exception()


class SingleFlight(Generic[T]):
    """Share one in-flight call between all concurrent callers.

    The result is never retained: the slot is emptied as soon as the call
    settles, so every call made afterwards starts a fresh lookup.
    """

    def __init__(self, func: Callable[[], Awaitable[T]]) -> None:
        self._func = func
        self._inflight: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    async def __call__(self) -> T:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run())
            self._inflight.add_done_callback(_retrieve_exception)
        # A cancelled caller must not cancel the lookup the others are waiting on.
        return await asyncio.shield(self._inflight)

    async def _run(self) -> T:
        try:
            return await self._func()
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None
