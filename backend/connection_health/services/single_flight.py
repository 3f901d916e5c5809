"""
Single-flight guard for async operations.

At most one in-progress operation exists per key. A caller arriving while
an operation for its key is running awaits that operation's result
instead of starting a second one. The table entry is removed when the
operation finishes, whatever the outcome (result, exception, cancellation).

Usage:
    flight = SingleFlight()
    result, joined = await flight.run(("user-1", "youtube"), lambda: do_refresh())
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)


class SingleFlight:
    """Per-key deduplication of concurrent coroutines (one event loop)."""

    def __init__(self):
        self._in_flight: Dict[Hashable, "asyncio.Task[Any]"] = {}

    def __len__(self) -> int:
        return len(self._in_flight)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def _release(self, key: Hashable, task: "asyncio.Task[Any]") -> None:
        # Only drop the entry if it still belongs to this task
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def run(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, bool]:
        """
        Start or join the operation for key.

        Args:
            key: Deduplication key
            factory: Called only when no operation for key is running

        Returns:
            (result, joined) where joined is True if this caller awaited
            an operation started by someone else

        Raises:
            Whatever the operation raised (to every waiting caller)
        """
        task = self._in_flight.get(key)
        joined = task is not None

        if task is None:
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.debug("Joining in-flight operation", extra={"key": str(key)})

        # shield: one cancelled waiter must not cancel the shared operation
        result = await asyncio.shield(task)
        return result, joined
