"""Single-threaded executor the session runs on.

All session state is mutated from callbacks run by one executor. Platform
callbacks from other threads enter through :meth:`Executor.post`; every wait
is a cancellable timer from :meth:`Executor.call_later`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Stop the timer; a cancelled timer never fires."""


class Executor(Protocol):
    def time(self) -> float:
        """Monotonic clock used for deadlines and last-seen timestamps."""

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)``; safe to call from any thread."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule ``callback(*args)`` after ``delay`` seconds."""


class LoopExecutor:
    """Executor backed by a running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def time(self) -> float:
        return self._loop.time()

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._loop.call_soon_threadsafe(callback, *args)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self._loop.call_later(max(0.0, delay), callback, *args)


def settle(future: Future[T], value: T) -> bool:
    """Resolve ``future`` unless it already finished or was cancelled."""
    if future.done():
        return False
    future.set_result(value)
    return True


def fail(future: Future[Any], exc: BaseException) -> bool:
    """Fail ``future`` unless it already finished or was cancelled."""
    if future.done():
        return False
    future.set_exception(exc)
    return True


def cancel_timer(handle: TimerHandle | None) -> None:
    if handle is not None:
        handle.cancel()
