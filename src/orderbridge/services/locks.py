"""Per-key mutual exclusion for read-validate-write-log sequences.

An in-process ``asyncio.Lock`` per key always applies. When a Redis client
is configured, a ``SET NX`` lock is taken as well so several API workers
serialize on the same Delivery or Order.
"""

import asyncio
import logging
import uuid
from contextlib import AsyncExitStack, asynccontextmanager

from orderbridge.errors.exceptions import ConflictError

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 10.0
LOCK_POLL_INTERVAL = 0.05

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class KeyedLock:
    def __init__(self, redis=None, ttl: int = LOCK_TTL_SECONDS, wait: float = LOCK_WAIT_SECONDS):
        self.redis = redis
        self.ttl = ttl
        self.wait = wait
        # key -> [lock, holders + waiters]
        self._local: dict[str, list] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        entry = self._local.get(key)
        if entry is None:
            entry = self._local[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                if self.redis is None:
                    yield
                else:
                    async with self._distributed(key):
                        yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._local.pop(key, None)

    @asynccontextmanager
    async def hold_all(self, keys):
        """Hold several keys at once, taken in sorted order."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield

    @asynccontextmanager
    async def _distributed(self, key: str):
        lock_key = f"orderbridge:lock:{key}"
        token = uuid.uuid4().hex
        acquired = await self._acquire(lock_key, token)
        try:
            yield
        finally:
            if acquired:
                await self._release(lock_key, token)

    async def _acquire(self, lock_key: str, token: str) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait
        try:
            while True:
                if await self.redis.set(lock_key, token, nx=True, ex=self.ttl):
                    return True
                if loop.time() >= deadline:
                    break
                await asyncio.sleep(LOCK_POLL_INTERVAL)
        except Exception as exc:
            # Redis outage: the in-process lock still serializes this worker.
            logger.warning("Redis lock error for %s: %s. Proceeding with local lock only.", lock_key, exc)
            return False
        logger.warning("Lock acquisition timed out for %s", lock_key)
        raise ConflictError(f"Could not acquire lock for {lock_key} within {self.wait}s")

    async def _release(self, lock_key: str, token: str) -> None:
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, lock_key, token)
        except Exception as exc:
            logger.warning("Redis lock release error for %s: %s", lock_key, exc)
