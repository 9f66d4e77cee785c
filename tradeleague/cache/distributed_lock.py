"""Distributed locking using Valkey.

Scheduled jobs take a non-blocking lock named after themselves so that an
overlapping trigger (a retried cron call, a second replica) is skipped
instead of running the batch twice.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from tradeleague.core.logging import get_logger

from .client import get_valkey_client


logger = get_logger("cache.lock")

LOCK_PREFIX = "tradeleague:lock"

# Delete only if we still own the key
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    """
    SET NX EX lock with an owner token.

    The expiry releases the lock if the holder dies mid-job.
    """

    def __init__(
        self,
        name: str,
        timeout: int = 30,
        blocking: bool = False,
        blocking_timeout: float | None = None,
        client: Redis | None = None,
    ):
        self.name = name
        self.key = f"{LOCK_PREFIX}:{name}"
        self.timeout = timeout
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token = str(uuid.uuid4())
        self._client = client
        self._acquired = False

    async def _get_client(self) -> Redis:
        if self._client is None:
            self._client = await get_valkey_client()
        return self._client

    async def acquire(self) -> bool:
        client = await self._get_client()
        start_time = time.monotonic()

        while True:
            if await client.set(self.key, self.token, ex=self.timeout, nx=True):
                self._acquired = True
                logger.debug(f"Lock acquired: {self.name}")
                return True

            if not self.blocking:
                return False

            if (
                self.blocking_timeout is not None
                and time.monotonic() - start_time >= self.blocking_timeout
            ):
                logger.debug(f"Lock acquisition timeout: {self.name}")
                return False

            await asyncio.sleep(0.1)

    async def release(self) -> bool:
        if not self._acquired:
            return False

        client = await self._get_client()
        self._acquired = False
        result = await client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        if not result:
            logger.warning(f"Lock expired before release: {self.name}")
            return False
        logger.debug(f"Lock released: {self.name}")
        return True


@asynccontextmanager
async def job_lock(name: str, timeout: int = 600) -> AsyncIterator[bool]:
    """
    Non-blocking lock for a scheduled job; yields whether it was acquired.

    When Valkey is unreachable the job runs without the lock.

    Usage:
        async with job_lock("ranking-update") as acquired:
            if not acquired:
                return skipped
            ...
    """
    lock = DistributedLock(f"job:{name}", timeout=timeout, blocking=False)
    guarded = True
    try:
        acquired = await lock.acquire()
    except (RedisError, OSError) as e:
        # Once-per-window jobs are still guarded by their job_runs claim
        logger.warning(f"Lock for job {name} unavailable, running unguarded: {e}")
        acquired, guarded = True, False

    try:
        yield acquired
    finally:
        if acquired and guarded:
            try:
                await lock.release()
            except (RedisError, OSError) as e:
                logger.warning(f"Lock for job {name} not released, expires in {timeout}s: {e}")
