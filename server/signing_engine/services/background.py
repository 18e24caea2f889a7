from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from signing_engine.core.errors import report_error


class BackgroundTaskRunner:
    """
    Fire-and-forget dispatch for best-effort side effects.

    Tasks are never awaited by the request path. A strong reference is kept
    until each task finishes, and any exception is sent to ``report_error``
    instead of surfacing as an unretrieved task exception.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, awaitable: Awaitable[Any], *, name: str, **context: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._guard(awaitable, name, context), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _guard(self, awaitable: Awaitable[Any], name: str, context: dict[str, Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            report_error(exc, side_effect=name, **context)
            return None
