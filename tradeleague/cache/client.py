"""Valkey client management.

Clients are kept per event loop: a redis.asyncio connection cannot be shared
across loops, and test runners create a fresh loop per test.
"""

from __future__ import annotations

import asyncio

from redis.asyncio import ConnectionPool, Redis

from tradeleague.core.config import settings
from tradeleague.core.logging import get_logger


logger = get_logger("cache.client")

_clients: dict[int, Redis] = {}


def _loop_id() -> int:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return 0


async def get_valkey_client() -> Redis:
    """Valkey client bound to the running event loop."""
    loop_id = _loop_id()
    client = _clients.get(loop_id)
    if client is None:
        pool = ConnectionPool.from_url(
            settings.valkey_url,
            max_connections=settings.valkey_max_connections,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client = _clients[loop_id] = Redis(connection_pool=pool)
        logger.info("Valkey client created", extra={"loop_id": loop_id})
    return client


async def close_valkey_client() -> None:
    """Close the client of the running event loop, if any."""
    client = _clients.pop(_loop_id(), None)
    if client is not None:
        await client.aclose()
        await client.connection_pool.disconnect()
        logger.info("Valkey client closed")


async def valkey_healthcheck() -> bool:
    try:
        client = await get_valkey_client()
        result = await asyncio.wait_for(client.ping(), timeout=5.0)
        return result is True or result == "PONG"
    except Exception as e:
        logger.warning(f"Valkey healthcheck failed: {e}")
        return False
