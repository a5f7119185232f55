"""
Key-value storage layer shared by the gateway and admin surface.

Values are strings; JSON records go through ``get_json``/``put_json``.
Credit balances need a check-and-debit that is atomic per key, so the store
exposes ``decrement_if_sufficient`` and ``increment_balance`` in addition to
plain CRUD. Redis implements them with Lua scripts, the in-memory store
under an asyncio lock.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from shared.errors import StorageError
from shared.logging import get_logger


# Balances are stored as bare integer strings; older records hold
# {"balance": n, "lastUpdated": "..."} and are normalised on write.
_DEBIT_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
local balance = 0
if raw then
  if string.sub(raw, 1, 1) == '{' then
    balance = tonumber(cjson.decode(raw)['balance']) or 0
  else
    balance = tonumber(raw) or 0
  end
end
local cost = tonumber(ARGV[1])
if balance < cost then
  return {0, balance}
end
local remaining = balance - cost
redis.call('SET', KEYS[1], tostring(remaining))
return {1, remaining}
"""

_ADD_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
local balance = 0
if raw then
  if string.sub(raw, 1, 1) == '{' then
    balance = tonumber(cjson.decode(raw)['balance']) or 0
  else
    balance = tonumber(raw) or 0
  end
end
local updated = balance + tonumber(ARGV[1])
redis.call('SET', KEYS[1], tostring(updated))
return updated
"""


def parse_balance(raw: Optional[str]) -> int:
    """Read a stored balance in either the bare or the legacy JSON form."""
    if raw is None or raw == "":
        return 0
    raw = raw.strip()
    if raw.startswith("{"):
        data = json.loads(raw)
        return int(data.get("balance", 0) or 0)
    return int(float(raw))


class Namespace:
    """Prefix helper: ``Namespace("client").key("abc") == "client:abc"``."""

    def __init__(self, prefix: str):
        self.prefix = prefix

    def key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    def strip(self, key: str) -> str:
        return key[len(self.prefix) + 1:]


CLIENT = Namespace("client")
CLIENT_LIST_KEY = "clients:list"
API_KEY = Namespace("apikey")
CREDITS = Namespace("credits")
EMAIL = Namespace("email")
USAGE = Namespace("usage")
KEY_USAGE = Namespace("keyusage")
CLIENT_KEYS = Namespace("client:keys")


class KeyValueStore(ABC):
    """Abstract key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the raw value or None."""

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store a raw value, optionally expiring after ``ttl`` seconds."""

    @abstractmethod
    async def put_if_absent(self, key: str, value: str) -> bool:
        """Atomically store ``value`` unless ``key`` exists; True when written."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key, returning whether it existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check for a key without reading it."""

    @abstractmethod
    async def list_keys(self, prefix: str) -> List[str]:
        """List keys starting with ``prefix``."""

    @abstractmethod
    async def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """Add to an integer counter, refreshing its TTL."""

    @abstractmethod
    async def decrement_if_sufficient(self, key: str, amount: int) -> Tuple[bool, int]:
        """Atomically debit a balance when it covers ``amount``.

        Returns ``(True, new_balance)`` on success or ``(False, balance)``
        when the balance is lower than ``amount``; the latter never writes.
        """

    @abstractmethod
    async def increment_balance(self, key: str, amount: int) -> int:
        """Atomically add to a balance and return the new value."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.put(key, json.dumps(value), ttl=ttl)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.keystore.redis")
        self._redis: Optional[redis.Redis] = None
        self._debit_script = None
        self._add_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self._debit_script = self._redis.register_script(_DEBIT_SCRIPT)
            self._add_script = self._redis.register_script(_ADD_SCRIPT)
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            client = await self._get_redis()
            return await client.get(key)
        except redis.RedisError as e:
            self.logger.error("Redis get error", key=key, error=str(e))
            raise StorageError(details={"operation": "get"}) from e

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            client = await self._get_redis()
            if ttl:
                await client.setex(key, ttl, value)
            else:
                await client.set(key, value)
        except redis.RedisError as e:
            self.logger.error("Redis put error", key=key, error=str(e))
            raise StorageError(details={"operation": "put"}) from e

    async def put_if_absent(self, key: str, value: str) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.set(key, value, nx=True))
        except redis.RedisError as e:
            self.logger.error("Redis put_if_absent error", key=key, error=str(e))
            raise StorageError(details={"operation": "put_if_absent"}) from e

    async def delete(self, key: str) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.delete(key))
        except redis.RedisError as e:
            self.logger.error("Redis delete error", key=key, error=str(e))
            raise StorageError(details={"operation": "delete"}) from e

    async def exists(self, key: str) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.exists(key))
        except redis.RedisError as e:
            self.logger.error("Redis exists error", key=key, error=str(e))
            raise StorageError(details={"operation": "exists"}) from e

    async def list_keys(self, prefix: str) -> List[str]:
        try:
            client = await self._get_redis()
            return [key async for key in client.scan_iter(match=f"{prefix}*")]
        except redis.RedisError as e:
            self.logger.error("Redis scan error", prefix=prefix, error=str(e))
            raise StorageError(details={"operation": "list_keys"}) from e

    async def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.incrby(key, amount)
                if ttl:
                    pipeline.expire(key, ttl)
                results = await pipeline.execute()
            return int(results[0])
        except redis.RedisError as e:
            self.logger.error("Redis increment error", key=key, error=str(e))
            raise StorageError(details={"operation": "increment"}) from e

    async def decrement_if_sufficient(self, key: str, amount: int) -> Tuple[bool, int]:
        try:
            await self._get_redis()
            success, balance = await self._debit_script(keys=[key], args=[amount])
            return bool(int(success)), int(balance)
        except redis.RedisError as e:
            self.logger.error("Redis debit error", key=key, error=str(e))
            raise StorageError(details={"operation": "debit"}) from e

    async def increment_balance(self, key: str, amount: int) -> int:
        try:
            await self._get_redis()
            return int(await self._add_script(keys=[key], args=[amount]))
        except redis.RedisError as e:
            self.logger.error("Redis balance add error", key=key, error=str(e))
            raise StorageError(details={"operation": "add"}) from e

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            await client.ping()
            return True
        except Exception as e:
            self.logger.error("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis store closed")


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for local runs and tests."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _read(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    def _write(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[str]:
        return self._read(key)

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._write(key, value, ttl)

    async def put_if_absent(self, key: str, value: str) -> bool:
        async with self._lock:
            if self._read(key) is not None:
                return False
            self._write(key, value)
            return True

    async def delete(self, key: str) -> bool:
        existed = self._read(key) is not None
        self._data.pop(key, None)
        return existed

    async def exists(self, key: str) -> bool:
        return self._read(key) is not None

    async def list_keys(self, prefix: str) -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._read(key) is not None]

    async def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        async with self._lock:
            current = int(self._read(key) or 0) + amount
            self._write(key, str(current), ttl)
            return current

    async def decrement_if_sufficient(self, key: str, amount: int) -> Tuple[bool, int]:
        async with self._lock:
            balance = parse_balance(self._read(key))
            if balance < amount:
                return False, balance
            remaining = balance - amount
            self._write(key, str(remaining))
            return True, remaining

    async def increment_balance(self, key: str, amount: int) -> int:
        async with self._lock:
            updated = parse_balance(self._read(key)) + amount
            self._write(key, str(updated))
            return updated


def create_store(storage_backend: str, redis_url: str) -> KeyValueStore:
    """Build the configured store."""
    if storage_backend == "memory":
        return InMemoryKeyValueStore()
    if storage_backend == "redis":
        return RedisKeyValueStore(redis_url)
    raise ValueError(f"Unknown storage backend: {storage_backend}")
