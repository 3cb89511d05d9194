"""
Redis service with async operations and graceful error handling.
- Never raises exceptions (returns None/False on failure)
- Lazy connection with health checks
- Disabled entirely when REDIS_ENABLED is false
"""

from typing import Optional
import redis.asyncio as redis
import logging
from fundingapi.config import Settings

logger = logging.getLogger(__name__)


class RedisService:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._enabled = settings.REDIS_ENABLED
        self._client: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def _get_client(self) -> Optional[redis.Redis]:
        """Lazy connection with health check"""
        if not self._enabled:
            return None
        if self._client is None:
            try:
                redis_kwargs = {
                    "host": self._settings.REDIS_HOST,
                    "port": self._settings.REDIS_PORT,
                    "db": self._settings.REDIS_DB,
                    "decode_responses": True,
                    "socket_connect_timeout": 5,
                    "socket_keepalive": True,
                    "health_check_interval": 30,
                }

                # Only add password if it's set
                if self._settings.REDIS_PASSWORD:
                    redis_kwargs["password"] = self._settings.REDIS_PASSWORD

                client = redis.Redis(**redis_kwargs)
                await client.ping()
                self._client = client
            except Exception as e:
                logger.warning(f"Redis connection failed: {e}")
                self._client = None
        return self._client

    async def set_if_absent(self, key: str, ttl_seconds: int) -> Optional[bool]:
        """
        SET key NX EX ttl.

        Returns True when the key was newly set, False when it already existed,
        None when Redis is unavailable (caller should proceed as if new).
        """
        try:
            client = await self._get_client()
            if client is None:
                return None
            created = await client.set(key, "1", ex=ttl_seconds, nx=True)
            return bool(created)
        except Exception as e:
            logger.warning(f"Redis SET NX failed for {key}: {e}")
            return None

    async def ping(self) -> bool:
        client = await self._get_client()
        return client is not None

    async def close(self):
        """Close connection pool on app shutdown"""
        if self._client:
            await self._client.aclose()
            self._client = None
