"""
Process-wide state for provider-bridge.

Holds the shared client pool and response cache. Both start empty, are
created on first use and are dropped by reset(). Keeping them here avoids
circular imports between transport and adapters.
"""

from typing import Optional

from provider_bridge.config import is_cache_enabled
from provider_bridge.pool import ClientPool, ResponseCache

client_pool: Optional[ClientPool] = None
response_cache: Optional[ResponseCache] = None


def get_client_pool() -> ClientPool:
    """Shared pool, created empty on first use."""
    global client_pool
    if client_pool is None:
        client_pool = ClientPool()
    return client_pool


def get_response_cache() -> Optional[ResponseCache]:
    """Shared cache, or None when caching is disabled."""
    global response_cache
    if not is_cache_enabled():
        return None
    if response_cache is None:
        response_cache = ResponseCache()
    return response_cache


def reset() -> None:
    """Forget the pool and cache. Call aclose_pool() first to close sockets."""
    global client_pool, response_cache
    client_pool = None
    response_cache = None


async def aclose_pool() -> None:
    """Close every pooled client and reset state."""
    if client_pool is not None:
        await client_pool.aclose()
    reset()
