"""Redis-backed run locks for detection runs."""

import hashlib
import json
import logging
from uuid import uuid4

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)


class CacheClient:
    """Redis client for serialising detection runs over the same scope."""

    RUN_LOCK_PREFIX = "transfers:detect:lock:"

    # Compare-and-delete so a run never releases a lock it no longer holds
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        password: str | None = None,
        lock_ttl: int | None = None,
    ):
        self.host = host or settings.redis_host
        self.port = port or settings.redis_port
        self.password = password or settings.redis_password
        self.lock_ttl = lock_ttl or settings.run_lock_ttl_seconds
        self._client: redis.Redis | None = None

    async def __aenter__(self) -> "CacheClient":
        """Async context manager entry."""
        self._client = redis.Redis(
            host=self.host,
            port=self.port,
            password=self.password or None,
            decode_responses=True,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client."""
        if self._client is None:
            raise RuntimeError("Cache client not initialized. Use async with context manager.")
        return self._client

    @staticmethod
    def scope_key(transaction_ids: list[str] | None, filter: dict | None) -> str:
        """Stable key for the set of transactions a run touches."""
        if transaction_ids:
            scope = {"ids": sorted(transaction_ids)}
        else:
            scope = {"filter": {k: v for k, v in (filter or {}).items() if v is not None}}
        digest = hashlib.sha256(json.dumps(scope, sort_keys=True, default=str).encode()).hexdigest()
        return f"{CacheClient.RUN_LOCK_PREFIX}{digest[:32]}"

    async def acquire_run_lock(self, key: str) -> str | None:
        """Take the lock, returning its token, or None if another run holds it."""
        token = str(uuid4())
        acquired = await self.client.set(key, token, nx=True, ex=self.lock_ttl)
        return token if acquired else None

    async def release_run_lock(self, key: str, token: str) -> None:
        """Release a lock taken with acquire_run_lock."""
        await self.client.eval(self.RELEASE_SCRIPT, 1, key, token)
