"""
Detached usage counters.

Counters are best effort: increments run as background tasks so the request
path never waits on them, and failures are logged rather than raised.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional, Set

from shared.keystore import KEY_USAGE, USAGE, KeyValueStore
from shared.logging import get_logger, mask_key


class UsageTracker:
    """Schedules per-day usage increments in the key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        ttl_days: int = 90,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ttl_seconds = ttl_days * 24 * 60 * 60
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: Set[asyncio.Task] = set()
        self.logger = get_logger("gateway.usage")

    def _day(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    def client_usage_key(self, client_id: str) -> str:
        return USAGE.key(f"{client_id}:{self._day()}")

    def key_usage_key(self, api_key: str) -> str:
        return KEY_USAGE.key(f"{api_key}:{self._day()}")

    def record_client_usage(self, client_id: str, credits: int) -> asyncio.Task:
        """Add consumed credits to today's counter for ``client_id``."""
        return self._schedule(self.client_usage_key(client_id), credits, client_id=client_id)

    def record_key_usage(self, api_key: str) -> asyncio.Task:
        """Count one request against today's counter for ``api_key``."""
        return self._schedule(self.key_usage_key(api_key), 1, api_key=mask_key(api_key))

    def _schedule(self, key: str, amount: int, **log_context) -> asyncio.Task:
        task = asyncio.create_task(self._increment(key, amount, log_context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _increment(self, key: str, amount: int, log_context: dict) -> None:
        try:
            await self.store.increment(key, amount, ttl=self.ttl_seconds)
        except Exception as e:
            self.logger.warning("Usage tracking failed", error=str(e), **log_context)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for scheduled increments, e.g. on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
