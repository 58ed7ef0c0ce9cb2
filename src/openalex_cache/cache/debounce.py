from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Set, Tuple

from openalex_cache.cache.context import DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingCall:
    task: Optional[asyncio.Task]
    generation: int


class DebounceScheduler:
    """
    Collapses bursts of calls under the same key into a single call.

    Each ``schedule`` restarts the timer for its key and replaces the arguments. Once the timer
    fires, the callable runs to completion even if the key is scheduled again meanwhile.
    """

    def __init__(self, delay_seconds: float = DEBOUNCE_SECONDS):
        self._delay_seconds = delay_seconds
        self._pending: Dict[Hashable, _PendingCall] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_keys(self) -> Tuple[Hashable, ...]:
        return tuple(self._pending)

    def schedule(self, key: Hashable, fn: Callable[..., Any], *args: Any) -> None:
        pending = self._pending.get(key)
        if pending is None:
            pending = _PendingCall(task=None, generation=0)
            self._pending[key] = pending

        pending.generation += 1
        generation = pending.generation
        action = "reset" if pending.task is not None and not pending.task.done() else "start"
        if action == "reset":
            pending.task.cancel()

        task = asyncio.create_task(self._run_after_wait(key=key, generation=generation, fn=fn, args=args))
        pending.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "Debounced call scheduled. key=%s wait_seconds=%s action=%s generation=%s",
            key,
            self._delay_seconds,
            action,
            generation,
        )

    def cancel(self, key: Hashable) -> bool:
        pending = self._pending.pop(key, None)
        if pending is None or pending.task is None or pending.task.done():
            return False
        pending.task.cancel()
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._pending):
            if self.cancel(key):
                cancelled += 1
        if cancelled:
            logger.info("Cancelled pending debounced calls. count=%s", cancelled)
        return cancelled

    async def flush(self) -> None:
        """Wait until every scheduled and running call has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_after_wait(
        self,
        *,
        key: Hashable,
        generation: int,
        fn: Callable[..., Any],
        args: Tuple[Any, ...],
    ) -> None:
        try:
            await asyncio.sleep(self._delay_seconds)
        except asyncio.CancelledError:
            return

        pending = self._pending.get(key)
        if pending is None or pending.generation != generation:
            return
        del self._pending[key]

        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Debounced call failed. key=%s generation=%s", key, generation)
