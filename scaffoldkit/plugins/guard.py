"""Deadline enforcement for calls into plugin code."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import itertools
import threading
from collections.abc import Callable
from typing import Any

from .errors import PluginTimeoutError

_thread_names = itertools.count(1)


def _discard_result(task: asyncio.Future[Any]) -> None:
    # Retrieve the outcome of an abandoned call so it is never reported
    # as an unhandled task exception.
    if not task.cancelled():
        task.exception()


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _settle(future: asyncio.Future[Any], result: Any, error: Exception | None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def run_in_daemon_thread(func: Callable[[], Any]) -> asyncio.Future[Any]:
    """Run *func* on a daemon thread and return a future for its outcome.

    Unlike the default executor, a daemon thread is never joined by
    ``asyncio.run`` or at interpreter exit, so an abandoned call cannot keep
    the process alive.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()
    call = functools.partial(contextvars.copy_context().run, func)

    def worker() -> None:
        try:
            result, error = call(), None
        except Exception as exc:
            result, error = None, exc
        try:
            loop.call_soon_threadsafe(_settle, future, result, error)
        except RuntimeError:
            # The loop is already closed; nobody is waiting any more.
            pass

    threading.Thread(
        target=worker, name=f"scaffoldkit-plugin-{next(_thread_names)}", daemon=True
    ).start()
    return future


class TimeoutGuard:
    """Runs one plugin call and fails if it does not settle in time.

    Coroutine functions run as an ``asyncio`` task; plain functions run on a
    daemon thread (see :func:`run_in_daemon_thread`).  When the deadline
    passes the guard raises :class:`PluginTimeoutError` right away.  A
    coroutine task is asked to cancel but not awaited; a thread cannot be
    stopped and is simply abandoned, without holding up process exit.  In
    both cases any late result or error is discarded.

    A timed-out call may still have partially mutated the filesystem before
    (or after) the deadline.  Callers that need all-or-nothing behaviour must
    run the call inside a ``ScaffoldTransaction``.
    """

    def __init__(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout

    async def run(
        self,
        func: Callable[..., Any],
        *args: Any,
        plugin_id: str = "unknown",
        operation: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Call ``func(*args, **kwargs)`` under the deadline and return its result.

        Raises:
            PluginTimeoutError: If the call has not settled after ``timeout`` seconds.
            Exception: Whatever the call itself raised, unchanged.
        """
        label = operation or getattr(func, "__name__", "call")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        if inspect.iscoroutinefunction(func):
            task = asyncio.ensure_future(func(*args, **kwargs))
            result = await self._wait(task, deadline, plugin_id, label, threaded=False)
        else:
            task = run_in_daemon_thread(functools.partial(func, *args, **kwargs))
            result = await self._wait(task, deadline, plugin_id, label, threaded=True)

        # A plain function may still hand back an awaitable; it shares the deadline.
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(_await(result))
            result = await self._wait(task, deadline, plugin_id, label, threaded=False)
        return result

    async def _wait(
        self,
        task: asyncio.Future[Any],
        deadline: float,
        plugin_id: str,
        label: str,
        *,
        threaded: bool,
    ) -> Any:
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        done, _ = await asyncio.wait({task}, timeout=remaining)
        if task in done:
            return task.result()

        task.add_done_callback(_discard_result)
        if not threaded:
            task.cancel()
        raise PluginTimeoutError(
            f"Plugin '{plugin_id}' {label} timed out after {self.timeout:g}s",
            plugin_id,
            timeout=self.timeout,
        )
