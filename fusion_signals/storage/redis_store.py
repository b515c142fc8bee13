"""Redis-backed key/value store.

Values are stored as raw bytes under ``{prefix}{key}``; serialization is
the caller's job.
"""

from __future__ import annotations

import logging

import redis

from fusion_signals.errors import PersistenceError

logger = logging.getLogger(__name__)

KEY_PREFIX = "fusion:"


class RedisStore:
    """KeyValueStore over a synchronous redis-py client."""

    def __init__(self, client: redis.Redis, prefix: str = KEY_PREFIX):
        self._client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = KEY_PREFIX) -> "RedisStore":
        """Create a store with its own client.

        The connection is opened lazily on the first command.
        """
        client = redis.Redis.from_url(url, decode_responses=False)  # bytes in, bytes out
        logger.info(f"Redis store configured: {url}")
        return cls(client, prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> bytes | None:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as e:
            raise PersistenceError(f"Redis GET {key} failed: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        try:
            self._client.set(self._key(key), value)
        except redis.RedisError as e:
            raise PersistenceError(f"Redis SET {key} failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return self._client.delete(self._key(key)) > 0
        except redis.RedisError as e:
            raise PersistenceError(f"Redis DELETE {key} failed: {e}") from e

    def ping(self) -> bool:
        """Check if Redis is responsive."""
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False
