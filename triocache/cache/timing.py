"""
Timers driving the periodic sweep.
"""

import inspect
from typing import Any, Awaitable, Callable

import trio


class TrioTimer:
    """
    Runs an async callback once, after a delay, as a task of the given nursery.

    Cancelling the nursery cancels every pending callback.
    """

    def __init__(self, nursery: trio.Nursery) -> None:
        self._nursery = nursery

    def __call__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self._nursery.start_soon(self._fire, delay, callback)

    async def _fire(self, delay: float, callback: Callable[[], Awaitable[None]]):
        await trio.sleep(delay)
        await callback()


async def maybe_await(result: Any) -> Any:
    """Caller supplied callbacks may be plain functions or coroutine functions."""
    if inspect.isawaitable(result):
        return await result
    return result
