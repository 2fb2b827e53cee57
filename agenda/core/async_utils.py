"""Bridge from sync request handlers to the async integrations."""

from __future__ import annotations

import asyncio
import inspect
from typing import Coroutine, TypeVar

import anyio

T = TypeVar("T")


async def _bounded(coro: Coroutine[object, object, T], timeout: float | None) -> T:
    if timeout is None:
        return await coro
    with anyio.fail_after(timeout):
        return await coro


def _loop_running_here() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Drive a coroutine to completion from synchronous code.

    Sync routes run in AnyIO worker threads, so the coroutine is handed back
    to the application's event loop, where the realtime hub's sockets live.
    Anywhere else (the worker process, scripts, plain tests) it gets a loop
    of its own. Calling this on the loop thread itself is a bug: await instead.
    """
    try:
        return anyio.from_thread.run(_bounded, coro, timeout)
    except RuntimeError:
        # The coroutine ran and raised RuntimeError itself.
        if inspect.getcoroutinestate(coro) != inspect.CORO_CREATED:
            raise
    if _loop_running_here():
        coro.close()
        raise RuntimeError("run_async called from async context; use await instead")
    return anyio.run(_bounded, coro, timeout)
