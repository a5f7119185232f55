"""
API key validation for the gateway.
"""

from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.errors import InvalidApiKeyError
from shared.keystore import API_KEY, KeyValueStore
from shared.logging import get_logger, mask_key
from shared.metrics import MetricsCollector
from shared.ttl_cache import TTLCache

from ..models import ApiKeyRecord, utcnow
from ..usage import UsageTracker


class ApiKeyValidator:
    """Resolves raw API keys to usable key records.

    Records found in the store are kept in ``cache``; a cached record is
    re-checked for ``active`` and expiry on every use, so a key that expires
    while cached is rejected and evicted.
    """

    def __init__(
        self,
        store: KeyValueStore,
        cache: TTLCache[ApiKeyRecord],
        usage: Optional[UsageTracker] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.usage = usage
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("gateway.api_key_validator")

    async def _load(self, raw_key: str) -> Optional[ApiKeyRecord]:
        record = self.cache.get(raw_key)
        if self.metrics:
            self.metrics.record_cache_lookup("api_key", record is not None)
        if record is not None:
            return record

        data = await self.store.get_json(API_KEY.key(raw_key))
        if data is None:
            return None

        data.setdefault("key", raw_key)
        try:
            record = ApiKeyRecord.model_validate(data)
        except PydanticValidationError as e:
            self.logger.error("Malformed API key record", api_key=mask_key(raw_key), error=str(e))
            return None

        if record.is_usable(self._clock()):
            self.cache.set(raw_key, record)
        return record

    async def validate(self, raw_key: str) -> ApiKeyRecord:
        """Return the record for ``raw_key`` or raise ``InvalidApiKeyError``."""
        record = await self._load(raw_key)
        if record is None:
            self.logger.info("Unknown API key", api_key=mask_key(raw_key))
            raise InvalidApiKeyError(details={"reason": "unknown"})

        if not record.active:
            self.cache.delete(raw_key)
            self.logger.info("Inactive API key", api_key=mask_key(raw_key))
            raise InvalidApiKeyError(details={"reason": "inactive"})

        if record.is_expired(self._clock()):
            self.cache.delete(raw_key)
            self.logger.info("Expired API key", api_key=mask_key(raw_key), expires_at=str(record.expires_at))
            raise InvalidApiKeyError(details={"reason": "expired"})

        if self.usage:
            self.usage.record_key_usage(raw_key)

        return record

    def invalidate(self, raw_key: str) -> None:
        """Drop a cached record after an admin change."""
        self.cache.delete(raw_key)
