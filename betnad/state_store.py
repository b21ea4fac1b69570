"""
OAuth state storage.

Keeps the PKCE code verifier for each authorize request until the callback
consumes it. An in-memory store serves tests and single-process runs; the
Redis store is used when ``REDIS_URL`` is configured.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis
from redis import exceptions as redis_exceptions

from betnad.errors import StorageUnavailable


class OAuthStateStore(Protocol):
    """Single-use mapping of OAuth state -> code verifier."""

    def save(self, state: str, verifier: str, ttl_seconds: int) -> None:
        ...

    def pop(self, state: str) -> Optional[str]:
        ...


@dataclass
class InMemoryOAuthStateStore:
    clock: Callable[[], float] = time.monotonic
    items: Dict[str, Tuple[str, float]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def save(self, state: str, verifier: str, ttl_seconds: int) -> None:
        with self._lock:
            self._purge_expired()
            self.items[state] = (verifier, self.clock() + ttl_seconds)

    def pop(self, state: str) -> Optional[str]:
        with self._lock:
            entry = self.items.pop(state, None)
        if entry is None:
            return None
        verifier, expires_at = entry
        if self.clock() >= expires_at:
            return None
        return verifier

    def _purge_expired(self) -> None:
        now = self.clock()
        for key in [k for k, (_, exp) in self.items.items() if exp <= now]:
            del self.items[key]


@dataclass
class RedisOAuthStateStore:
    """Redis-backed store; entries expire through the key TTL."""

    url: str
    key_prefix: str = "betnad:oauth_state:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, state: str) -> str:
        return f"{self.key_prefix}{state}"

    def save(self, state: str, verifier: str, ttl_seconds: int) -> None:
        try:
            self.client.set(self._key(state), verifier, ex=ttl_seconds)
        except redis_exceptions.RedisError as exc:
            self._reconnect()
            raise StorageUnavailable() from exc

    def pop(self, state: str) -> Optional[str]:
        try:
            value = self.client.getdel(self._key(state))
        except redis_exceptions.RedisError as exc:
            self._reconnect()
            raise StorageUnavailable() from exc
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def _reconnect(self) -> None:
        # Managed Redis drops idle connections; start from a fresh client.
        self.client = redis.Redis.from_url(self.url)
