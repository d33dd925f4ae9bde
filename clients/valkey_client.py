"""
Valkey (Redis-compatible) client for device sessions and single-use codes.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
Every call is bounded by the socket timeout; a slow or unreachable server
surfaces as redis.TimeoutError / redis.ConnectionError.
"""

import json
import logging
from typing import Any, Callable, Set

import redis
from redis.client import Pipeline

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set_json("session:abc", {"user_id": "..."}, expire_seconds=300)
        data = client.get_json("session:abc")  # Returns None if missing
    """

    def __init__(self, url: str, timeout_seconds: float = 5.0):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            timeout_seconds: Upper bound for connect and for each command

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """Get value by key. None if the key doesn't exist."""
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """Set key to value, optionally with expiration in seconds."""
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, *keys: str) -> int:
        """Delete keys. Returns how many existed."""
        if not keys:
            return 0
        return self._client.delete(*keys)

    def exists(self, key: str) -> bool:
        """Check if key exists."""
        return self._client.exists(key) > 0

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        """Set key to JSON-serialized value."""
        self.set(key, self.encode_json(value), expire_seconds)

    @staticmethod
    def encode_json(value: dict | list) -> str:
        """Serialize a value for storage (also used inside transactions)."""
        return json.dumps(value)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        return self.decode_json(key, self.get(key))

    @staticmethod
    def decode_json(key: str, value: str | None) -> dict | list | None:
        """Deserialize a raw value read from Valkey (None passes through)."""
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def add_to_set(self, key: str, member: str, expire_seconds: int | None = None) -> None:
        """Add member to a set, optionally refreshing the set's TTL."""
        self._client.sadd(key, member)
        if expire_seconds is not None:
            self._client.expire(key, expire_seconds)

    def remove_from_set(self, key: str, *members: str) -> None:
        """Remove members from a set. Missing members are ignored."""
        if members:
            self._client.srem(key, *members)

    def set_members(self, key: str) -> Set[str]:
        """All members of a set (empty if the key doesn't exist)."""
        return self._client.smembers(key)

    def transaction(self, func: Callable[[Pipeline], Any], *watch_keys: str) -> Any:
        """
        Run func under WATCH on watch_keys and return its result.

        func receives a pipeline in immediate mode: reads execute right away.
        It calls pipe.multi() before queueing writes, which then commit
        atomically on return. If any watched key changed in between, the
        whole function is re-run against fresh state, so func must
        re-validate everything it reads.
        """
        return self._client.transaction(func, *watch_keys, value_from_callable=True)

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
