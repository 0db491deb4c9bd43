"""
Isolated execution context for capabilities that may block.

Guest code runs on the driver's call stack. If the driver is itself inside
an asyncio event loop and a guest-triggered capability tried to open a
second wait (asyncio.run, loop.run_until_complete) on that stack, Python
would fail with "cannot be called from a running event loop" or deadlock.
Blocking capabilities therefore never wait on the caller's stack: they are
handed to a dedicated worker thread that owns its own event loop, and the
caller only waits on a plain future.

Entering a blocking capability while one is already in progress on the
same thread (including from inside the worker) is a ReentrancyError.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .errors import ReentrancyError

logger = logging.getLogger(__name__)

_state = threading.local()


def in_blocking_call() -> bool:
    """True while the current thread is inside a blocking capability."""
    return getattr(_state, "active", False)


class BlockingRunner:
    """
    Runs blocking calls on one dedicated worker thread.

    Callables may be plain functions or return awaitables; awaitables are
    driven by the worker's own event loop, never by the caller's.
    """

    def __init__(self, name: str = "wrought-blocking"):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Call `fn(*args, **kwargs)` on the worker and wait for the result.

        Raises:
            ReentrancyError: if called from inside another blocking call
        """
        if in_blocking_call():
            raise ReentrancyError("Blocking capability entered while another blocking wait is active")
        if self._closed:
            raise RuntimeError(f"{self.name} runner is closed")

        _state.active = True
        try:
            future = self._executor.submit(self._invoke, fn, args, kwargs)
            return future.result()
        finally:
            _state.active = False

    def _invoke(self, fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        _state.active = True
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = self._worker_loop().run_until_complete(result)
            return result
        finally:
            _state.active = False

    def _worker_loop(self) -> asyncio.AbstractEventLoop:
        # Only ever touched from the worker thread
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
        return self._loop

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        def _close_loop() -> None:
            if self._loop is not None:
                self._loop.close()
                self._loop = None

        self._executor.submit(_close_loop).result()
        self._executor.shutdown(wait=True)
        logger.debug("Closed %s runner", self.name)
