"""
Cached client record lookup for the request path.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from shared.keystore import CLIENT, KeyValueStore
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.ttl_cache import TTLCache

from ..models import ClientRecord


class ClientLookup:
    """Read-through cache of client records."""

    def __init__(
        self,
        store: KeyValueStore,
        cache: TTLCache[ClientRecord],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("gateway.client_lookup")

    async def get(self, client_id: str) -> Optional[ClientRecord]:
        client = self.cache.get(client_id)
        if self.metrics:
            self.metrics.record_cache_lookup("client", client is not None)
        if client is not None:
            return client

        data = await self.store.get_json(CLIENT.key(client_id))
        if data is None:
            return None

        try:
            client = ClientRecord.model_validate(data)
        except PydanticValidationError as e:
            self.logger.error("Malformed client record", client_id=client_id, error=str(e))
            return None

        self.cache.set(client_id, client)
        return client

    def invalidate(self, client_id: str) -> None:
        self.cache.delete(client_id)
