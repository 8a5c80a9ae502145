"""
Callback registration and dispatch shared by sockets, channels and pushes.

Hooks may be plain functions or coroutine functions. They are run one at
a time in registration order; a failing hook is logged and does not stop
the others or the caller.
"""
import asyncio
import inspect
from typing import Any, Callable, List, Optional, Set

from relaychat.core.logging import get_logger

logger = get_logger(__name__)

# Strong references to fire-and-forget tasks so they are not collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


async def invoke(callback: Callable, *args: Any) -> Any:
    """Call a hook and await it if it returned an awaitable."""
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def spawn(callback: Callable, *args: Any) -> Optional[asyncio.Task]:
    """Call a hook without waiting for it. Coroutines run as background tasks."""
    try:
        result = callback(*args)
    except Exception as e:
        logger.error("[Hooks] Fire-and-forget callback failed", callback=_name(callback), error=str(e))
        return None
    if not inspect.isawaitable(result):
        return None
    task = asyncio.ensure_future(result)
    _background_tasks.add(task)
    task.add_done_callback(_finish_background)
    return task


def _finish_background(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[Hooks] Background callback failed", error=str(exc))


def _name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", repr(callback))


class HookList:
    """Ordered list of hooks for one lifecycle event."""

    def __init__(self, name: str):
        self.name = name
        self._hooks: List[Callable] = []

    def add(self, callback: Callable) -> None:
        if callback not in self._hooks:
            self._hooks.append(callback)

    def remove(self, callback: Callable) -> None:
        if callback in self._hooks:
            self._hooks.remove(callback)

    def clear(self) -> None:
        self._hooks.clear()

    def __len__(self) -> int:
        return len(self._hooks)

    async def fire(self, *args: Any) -> None:
        # Copy so hooks can unregister themselves while firing
        for callback in list(self._hooks):
            try:
                await invoke(callback, *args)
            except Exception as e:
                logger.error("[Hooks] Hook failed", hook=self.name, callback=_name(callback),
                             error=str(e), exc_info=True)
