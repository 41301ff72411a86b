from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .config import LiveStateSettings
from .errors import BackendUnavailableError

logger = logging.getLogger(__name__)


class KeyValueBackend(ABC):
    """Single-slot string storage the state store persists into."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryBackend(KeyValueBackend):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def ping(self) -> bool:
        return True


class RedisBackend(KeyValueBackend):
    """Redis-backed slot; the client is created lazily on first use."""

    def __init__(self, url: str, *, socket_timeout: float = 5.0) -> None:
        self.url = url
        self._socket_timeout = socket_timeout
        self._client: Optional[aioredis.Redis] = None

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        return self._client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._get_client().get(key)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.error("Redis client error url=%s op=get: %s", self.url, exc)
            raise BackendUnavailableError(f"Redis unavailable at {self.url}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._get_client().set(key, value)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.error("Redis client error url=%s op=set: %s", self.url, exc)
            raise BackendUnavailableError(f"Redis unavailable at {self.url}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except (RedisConnectionError, RedisTimeoutError):
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()


def build_backend(settings: LiveStateSettings) -> KeyValueBackend:
    if settings.backend == "memory":
        return MemoryBackend()
    return RedisBackend(settings.redis_url)
