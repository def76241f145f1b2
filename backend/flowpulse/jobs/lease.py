"""Job-type leases so only one runner executes a given rollup at a time."""

from __future__ import annotations

import threading
import uuid
from typing import Optional, Protocol

from redis import Redis

from flowpulse.core.config import settings

_LEASE_PREFIX = "flowpulse:lease"

# Release only when the stored token is still ours.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class Lease(Protocol):
    def acquire(self, name: str) -> Optional[str]: ...

    def release(self, name: str, token: str) -> None: ...


class LocalLease:
    """Process-local lease for single-process deployments and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: dict[str, str] = {}

    def acquire(self, name: str) -> Optional[str]:
        with self._lock:
            if name in self._held:
                return None
            token = uuid.uuid4().hex
            self._held[name] = token
            return token

    def release(self, name: str, token: str) -> None:
        with self._lock:
            if self._held.get(name) == token:
                del self._held[name]


class RedisLease:
    """Deployment-wide lease using ``SET NX EX``; expires if the holder dies."""

    def __init__(self, client: Redis, ttl_seconds: int) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, name: str) -> str:
        return f"{_LEASE_PREFIX}:{name}"

    def acquire(self, name: str) -> Optional[str]:
        token = uuid.uuid4().hex
        if self.client.set(self._key(name), token, nx=True, ex=self.ttl_seconds):
            return token
        return None

    def release(self, name: str, token: str) -> None:
        self.client.eval(_RELEASE_SCRIPT, 1, self._key(name), token)


_lease: Optional[Lease] = None


def get_lease() -> Lease:
    global _lease
    if _lease is None:
        if settings.scheduler_lease_backend == "local":
            _lease = LocalLease()
        else:
            client = Redis.from_url(settings.redis_url, decode_responses=True)
            _lease = RedisLease(client, settings.scheduler_lease_ttl_seconds)
    return _lease
