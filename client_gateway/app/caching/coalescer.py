"""
Request coalescing to prevent duplicate backend calls.

When several coroutines ask for the same cache key while a fetch is in
flight, only one backend call is made and every caller shares its result
or its exception.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging import get_logger
from shared.metrics import GatewayMetrics


class RequestCoalescer:
    """
    Shares one in-flight fetch per key.

    Pattern:
    - First caller for a key starts the fetch as a task
    - Later callers for the same key await that task
    - The task is shielded so a cancelled caller does not cancel the fetch
    - The key is forgotten as soon as the task finishes

    Usage:
        coalescer = RequestCoalescer()
        data = await coalescer.get_or_fetch("api_cache:guest:GET posts/", fetch)
    """

    def __init__(self, metrics: Optional[GatewayMetrics] = None):
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._waiters: Dict[str, int] = {}
        self.metrics = metrics
        self.logger = get_logger("gateway.coalescer")

    async def get_or_fetch(self, key: str, fetch_fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Join an in-flight fetch for ``key`` or start a new one.

        Raises:
            Exception: Whatever the shared fetch raised
        """
        task = self._in_flight.get(key)
        if task is None:
            self.logger.debug("Initiating fetch", key=key)
            task = asyncio.ensure_future(fetch_fn())
            self._in_flight[key] = task
            self._waiters[key] = 0
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            self._waiters[key] += 1
            self.logger.debug("Coalescing request", key=key, waiters=self._waiters[key])
            if self.metrics:
                self.metrics.record_coalesced()

        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._waiters.pop(key, None)
        if not task.cancelled():
            # mark the exception retrieved even when every caller went away
            task.exception()

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
