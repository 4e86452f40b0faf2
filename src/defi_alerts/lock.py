"""Single-flight run lease backed by Redis.

Overlapping scans race between stale closing and upsert, so the entry point
takes this lease before running. The lease expires on its own if the holder
dies.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_LEASE_KEY = "defi_alerts:scan:lease"
DEFAULT_LEASE_TTL_SECONDS = 600

# Delete only if we still hold the lease.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LeaseNotAcquiredError(RuntimeError):
    """Raised when another run holds the lease."""


class RunLease:
    """Redis ``SET NX EX`` lease with owner-checked release.

    Example:
        ```python
        lease = RunLease(Redis.from_url(settings.redis.url), ttl_seconds=600)
        async with lease:
            await engine.run_once()
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key: str = DEFAULT_LEASE_KEY,
        ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    ) -> None:
        self._redis = redis
        self._key = key
        self._ttl = ttl_seconds
        self._token = uuid.uuid4().hex
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> bool:
        """Try to take the lease.

        Returns:
            True if acquired, False if another run holds it.
        """
        was_set = await self._redis.set(self._key, self._token, nx=True, ex=self._ttl)
        self._held = bool(was_set)
        if not self._held:
            logger.warning("Run lease %s is held by another run", self._key)
        else:
            logger.debug("Acquired run lease %s for %ds", self._key, self._ttl)
        return self._held

    async def release(self) -> None:
        if not self._held:
            return
        released = await self._redis.eval(_RELEASE_SCRIPT, 1, self._key, self._token)
        self._held = False
        if not released:
            logger.warning("Run lease %s expired before release", self._key)

    async def __aenter__(self) -> RunLease:
        if not await self.acquire():
            raise LeaseNotAcquiredError(self._key)
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.release()
