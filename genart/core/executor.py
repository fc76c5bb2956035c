"""Dual-context execution: background workers and the owning event loop.

Architectural role:
    Every network call in `genart` runs on a worker thread, and every
    caller-visible side effect (events, decoded images) is applied on the
    owning context. This module provides both surfaces.

Owning context:
    The asyncio event loop running on the thread that constructs the executor.
    It is captured once in `__init__`; constructing the executor outside a
    running loop raises `ContextCaptureError` immediately, so a later thread
    hop can never capture the wrong loop.

Surfaces:
    - `await background(work, *args)`: runs `work` on the worker pool. Errors
      are logged and re-raised to the awaiting coroutine.
    - `foreground(action, *args)`: callable from any thread. Queues `action` on
      the owning loop and returns a `concurrent.futures.Future` that resolves
      after `action` ran (or carries its exception). Actions run one at a time
      in the order they were queued.

Blocking rules:
    Workers may block on a foreground future (`.result()`); the owning loop
    must never block on one, because it is the only thread able to run it.
"""

import asyncio
import concurrent.futures
import functools
import logging
import threading

from genart.core.errors import ContextCaptureError


logger = logging.getLogger(__name__)


class DualContextExecutor:
    """Background worker pool plus ordered hand-off onto the owning loop."""

    def __init__(self, max_workers: int | None = None, thread_name_prefix: str = "genart-worker"):
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError as err:
            raise ContextCaptureError(
                "DualContextExecutor must be created inside the owning event loop."
            ) from err
        self._owner_thread_id = threading.get_ident()
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def on_owner_thread(self) -> bool:
        return threading.get_ident() == self._owner_thread_id

    async def background(self, work, *args, **kwargs):
        """Run `work(*args, **kwargs)` on a worker thread and await its result."""
        call = functools.partial(_run_logged, work, *args, **kwargs)
        return await self._loop.run_in_executor(self._pool, call)

    def foreground(self, action, *args) -> concurrent.futures.Future:
        """Queue `action(*args)` on the owning loop.

        Returns:
            Future resolved with the action's return value once it has run.
            If the loop is already closed the future fails with
            `RuntimeError`.
        """
        future = concurrent.futures.Future()
        try:
            self._loop.call_soon_threadsafe(_run_on_owner, action, args, future)
        except RuntimeError as err:
            # Loop closed; nothing will ever drain the queue.
            future.set_exception(err)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def _run_logged(work, *args, **kwargs):
    try:
        return work(*args, **kwargs)
    except Exception:
        logger.exception("Background work %s failed", getattr(work, "__qualname__", work))
        raise


def _run_on_owner(action, args, future: concurrent.futures.Future) -> None:
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = action(*args)
    except Exception as err:
        logger.exception("Foreground action %s failed", getattr(action, "__qualname__", action))
        future.set_exception(err)
    else:
        future.set_result(result)
