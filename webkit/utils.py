"""
webkit - Small Runtime Helpers
================================

run_async(fn, *args, **kwargs)
    Fire-and-forget. Starts `fn` on its own unit of execution and logs any
    exception it raises instead of letting it escape. Best-effort only: there
    is no handle, no result, no cancellation, and no ordering relative to the
    caller. A failed unit of work is logged and dropped.

        Coroutine, coroutine function or
        object with `async def __call__`  → asyncio task on the running loop
        Plain callable                    → daemon thread; a coroutine it
                                            returns runs on a private loop

print_json(value)
    Logs a value as indented JSON. Debugging aid.
"""

import asyncio
import inspect
import json
import logging
import threading
from typing import Any, Callable, Set

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# asyncio keeps only weak references to tasks; hold them until they finish
_background_tasks: Set["asyncio.Task[Any]"] = set()


def _log_task_failure(task: "asyncio.Task[Any]") -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Async Recover: %s", exc, exc_info=exc)


def _run_guarded(fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    try:
        result = fn(*args, **kwargs)
        # A plain function that returns a coroutine (e.g. a lambda wrapping an
        # async call) gets a private event loop on this thread
        if inspect.iscoroutine(result):
            asyncio.run(result)
    except Exception as exc:
        logger.error("Async Recover: %s", exc, exc_info=True)


def _is_async_callable(fn: Any) -> bool:
    """True for coroutine functions and objects with an `async def __call__`."""
    return inspect.iscoroutinefunction(fn) or (
        callable(fn) and inspect.iscoroutinefunction(getattr(fn, "__call__", None))
    )


def run_async(fn: Any, *args: Any, **kwargs: Any) -> None:
    """
    Run `fn` in the background and contain its failures.

    Args:
        fn:  A coroutine object, an async callable, or a plain callable.
             Arguments are passed through to functions.

    Raises:
        RuntimeError: If a coroutine is given and no event loop is running.
    """
    if _is_async_callable(fn):
        fn = fn(*args, **kwargs)

    if inspect.iscoroutine(fn):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            fn.close()
            raise
        task = loop.create_task(fn)
        _background_tasks.add(task)
        task.add_done_callback(_log_task_failure)
        return

    thread = threading.Thread(
        target=_run_guarded,
        args=(fn, args, kwargs),
        name=f"run_async-{getattr(fn, '__name__', 'task')}",
        daemon=True,
    )
    thread.start()


def print_json(value: Any) -> None:
    """Log `value` as indented JSON (pydantic models are dumped first)."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as exc:
        logger.error("print_json: %s", exc)
        return
    logger.info("%s", text)
