"""
Connection pool and response cache.

Both are pure optimizations: every call is correct with a cold pool and an
empty cache. Both take an injectable clock so eviction is testable without
real timers.
"""

import hashlib
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import httpx

from provider_bridge.config import (
    get_cache_max_entries,
    get_cache_ttl_seconds,
    get_pool_idle_seconds,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def origin_of(url: str) -> str:
    """scheme://host:port for a URL, the pool key."""
    parsed = httpx.URL(url)
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return f"{parsed.scheme}://{parsed.host}:{port}"


# ─────────────────────────────────────────────────────────────────────
# CLIENT POOL
# ─────────────────────────────────────────────────────────────────────

@dataclass
class PoolEntry:
    client: httpx.AsyncClient
    last_used: float
    in_use: int = 0


class ClientPool:
    """
    One httpx.AsyncClient per origin, reused across calls.

    Eviction only ever closes entries with no call in flight; an entry being
    leased is skipped no matter how stale its timestamp is.
    """

    def __init__(
        self,
        idle_seconds: Optional[float] = None,
        clock: Clock = time.monotonic,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            idle_seconds: Unused entries older than this are pruned
            clock: Monotonic time source
            transport: Optional httpx transport for every client (tests)
        """
        self.idle_seconds = get_pool_idle_seconds() if idle_seconds is None else idle_seconds
        self._clock = clock
        self._transport = transport
        self._entries: dict[str, PoolEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, origin: str) -> Optional[PoolEntry]:
        return self._entries.get(origin)

    def put(self, origin: str, client: httpx.AsyncClient) -> PoolEntry:
        entry = PoolEntry(client=client, last_used=self._clock())
        self._entries[origin] = entry
        return entry

    def _new_client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(transport=self._transport, timeout=None)
        return httpx.AsyncClient(timeout=None)

    @asynccontextmanager
    async def lease(self, url: str) -> AsyncIterator[httpx.AsyncClient]:
        """
        Borrow the client for `url`'s origin, creating it on a cold miss.

        Idle entries for every origin are pruned first, so the pool never
        outgrows the set of origins used within idle_seconds.
        """
        await self.prune()
        origin = origin_of(url)
        entry = self._entries.get(origin)
        if entry is None or entry.client.is_closed:
            entry = self.put(origin, self._new_client())
        entry.in_use += 1
        entry.last_used = self._clock()
        try:
            yield entry.client
        finally:
            entry.in_use -= 1
            entry.last_used = self._clock()

    def expired(self, now: Optional[float] = None) -> list[str]:
        """Origins idle longer than idle_seconds with no call in flight."""
        now = self._clock() if now is None else now
        return [
            origin for origin, entry in self._entries.items()
            if entry.in_use == 0 and now - entry.last_used > self.idle_seconds
        ]

    def _detach_expired(self, now: Optional[float] = None) -> list[tuple[str, PoolEntry]]:
        detached = []
        for origin in self.expired(now):
            entry = self._entries[origin]
            if entry.in_use == 0:
                detached.append((origin, self._entries.pop(origin)))
        return detached

    async def prune(self, now: Optional[float] = None) -> list[str]:
        """
        Close and drop expired entries. Returns the evicted origins.

        Every expired entry leaves the pool before the first client is
        closed; a lease taken while closes are pending gets a fresh client.
        """
        detached = self._detach_expired(now)
        for _, entry in detached:
            await entry.client.aclose()
        evicted = [origin for origin, _ in detached]
        if evicted:
            logger.debug(f"Pruned {len(evicted)} idle client(s): {evicted}")
        return evicted

    async def warm(self, base_url: str) -> bool:
        """
        Best-effort connection pre-warm.

        Tries HEAD {base_url}/health, then OPTIONS {base_url}. Never raises;
        returns whether either request reached the server.
        """
        async with self.lease(base_url) as client:
            for method, url in (("HEAD", f"{base_url.rstrip('/')}/health"), ("OPTIONS", base_url)):
                try:
                    await client.request(method, url, timeout=5.0)
                    return True
                except httpx.HTTPError as e:
                    logger.debug(f"Warmup {method} {url} failed: {e}")
        return False

    async def aclose(self) -> None:
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await entry.client.aclose()


# ─────────────────────────────────────────────────────────────────────
# RESPONSE CACHE
# ─────────────────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    response: str
    timestamp: float
    ttl: float


class ResponseCache:
    """
    Completed responses keyed on provider, model and prompt.

    Provider and model are part of the key, so switching either never
    serves an answer produced by another backend.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Clock = time.monotonic,
    ):
        self.ttl_seconds = get_cache_ttl_seconds() if ttl_seconds is None else ttl_seconds
        self.max_entries = get_cache_max_entries() if max_entries is None else max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key(provider_id: str, model: str, prompt: str) -> str:
        raw = "\x00".join((provider_id, model, prompt))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, provider_id: str, model: str, prompt: str) -> Optional[str]:
        cache_key = self.key(provider_id, model, prompt)
        entry = self._entries.get(cache_key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= entry.ttl:
            del self._entries[cache_key]
            return None
        return entry.response

    def put(
        self,
        provider_id: str,
        model: str,
        prompt: str,
        response: str,
        ttl_seconds: Optional[float] = None,
    ) -> None:
        self._entries[self.key(provider_id, model, prompt)] = CacheEntry(
            response=response,
            timestamp=self._clock(),
            ttl=self.ttl_seconds if ttl_seconds is None else ttl_seconds,
        )
        while len(self._entries) > self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].timestamp)
            del self._entries[oldest]

    def clear(self) -> None:
        self._entries.clear()
