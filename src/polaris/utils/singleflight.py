"""Per-key in-flight call registry (single-flight)."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class SingleFlight:
    """Collapse concurrent calls for the same key into one execution.

    The first caller for a key starts the work as its own task; every caller,
    the first one included, awaits that task through ``asyncio.shield``.
    Cancelling one caller therefore never cancels the shared work or the
    other callers waiting on it. The registry entry is removed as soon as
    the task settles, whether it succeeded or raised, so the next call
    after that starts fresh.
    """

    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._settle(key, done))
        else:
            logger.debug("Joining in-flight call for key=%s", key[:48])
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark retrieved so a failure nobody is left to observe is not reported by asyncio
        if not task.cancelled():
            task.exception()
