"""Dedicated threads for long-lived blocking reads.

The event stream read and exec drains can block indefinitely, so they
never run on the event loop's default executor: a handful of them would
hold every pool worker and starve short calls such as container lookups.
Each one gets its own daemon thread instead.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_in_thread(func: Callable[..., T], *args: Any, name: str | None = None) -> T:
    """Run ``func(*args)`` on a new daemon thread and await its result.

    Cancelling the awaiting task does not stop the thread; callers tie the
    blocking call to a ``CancelToken`` so it can be unblocked.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _set_result(result: T) -> None:
        if not future.done():
            future.set_result(result)

    def _set_exception(exc: BaseException) -> None:
        if not future.done():
            future.set_exception(exc)

    def _target() -> None:
        try:
            result = func(*args)
        except BaseException as e:
            outcome, value = _set_exception, e
        else:
            outcome, value = _set_result, result
        try:
            loop.call_soon_threadsafe(outcome, value)
        except RuntimeError:
            # Event loop already closed; nobody is waiting any more
            pass

    thread = threading.Thread(target=_target, name=name, daemon=True)
    thread.start()
    return await future
