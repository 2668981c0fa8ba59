"""
Transport - executes one cancellable, time-bounded HTTP call.

A RequestContext carries the cancellation token and hard deadline for one
logical call. CallSession keeps at most one context active: beginning a new
call cancels the previous one first. No retries happen here.
"""

import asyncio
import inspect
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import httpx

from provider_bridge.builder import BuiltRequest
from provider_bridge.descriptors import ProviderDescriptor
from provider_bridge.errors import (
    CallCancelled,
    NetworkError,
    ProviderError,
    ProviderTimeoutError,
)
from provider_bridge.pool import ClientPool

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────────────
# CANCELLATION AND CONTEXT
# ─────────────────────────────────────────────────────────────────────

class CancelToken:
    """One-shot cancellation flag that can also be awaited."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RequestContext:
    """
    Per-call state: token, descriptor, key, deadline and the text streamed
    so far. Discarded when the call completes, fails or is superseded.
    """

    descriptor: ProviderDescriptor
    api_key: str
    timeout_seconds: Optional[float] = None
    token: CancelToken = field(default_factory=CancelToken)
    buffer: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def provider_id(self) -> str:
        return self.descriptor.id

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def text(self) -> str:
        return "".join(self.buffer)

    def append(self, delta: str) -> None:
        self.buffer.append(delta)

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - (time.monotonic() - self.started_at))

    def check(self) -> None:
        """Raise if the call was cancelled or has run out of time."""
        if self.token.cancelled:
            raise CallCancelled(
                f"Request {self.token.reason or 'cancelled'}", provider_id=self.provider_id
            )
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ProviderTimeoutError(
                timeout_seconds=self.timeout_seconds, provider_id=self.provider_id
            )

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable`, abandoning it on cancellation or deadline.

        Raises:
            CallCancelled: The token fired first
            ProviderTimeoutError: The deadline passed first
        """
        try:
            self.check()
        except ProviderError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await asyncio.gather(waiter, return_exceptions=True)

        if not task.cancelled() and task.done():
            return task.result()
        self.check()
        # The deadline elapsed inside asyncio.wait but remaining() rounded up
        raise ProviderTimeoutError(timeout_seconds=self.timeout_seconds, provider_id=self.provider_id)

    async def sleep(self, seconds: float) -> None:
        """Cancellable, deadline-aware sleep."""
        await self.guard(asyncio.sleep(seconds))

    def httpx_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.remaining())


class CallSession:
    """
    At most one active call per session.

    begin() cancels whatever call is still in flight before handing out a
    fresh context, so streamed output from two calls never interleaves.
    """

    def __init__(self):
        self._current: Optional[RequestContext] = None

    @property
    def active(self) -> Optional[RequestContext]:
        return self._current

    def begin(
        self,
        descriptor: ProviderDescriptor,
        api_key: str,
        timeout_seconds: Optional[float] = None,
    ) -> RequestContext:
        if self._current is not None and not self._current.cancelled:
            logger.info(f"Superseding in-flight call to {self._current.provider_id}")
            self._current.cancel("superseded")
        ctx = RequestContext(descriptor=descriptor, api_key=api_key, timeout_seconds=timeout_seconds)
        self._current = ctx
        return ctx

    def finish(self, ctx: RequestContext) -> None:
        if self._current is ctx:
            self._current = None

    def cancel(self) -> None:
        """Cancel the active call, if any."""
        if self._current is not None:
            self._current.cancel("cancelled")
            self._current = None


# ─────────────────────────────────────────────────────────────────────
# TRANSPORT
# ─────────────────────────────────────────────────────────────────────

def _map_httpx_error(error: httpx.HTTPError, ctx: RequestContext) -> Exception:
    if isinstance(error, httpx.TimeoutException):
        return ProviderTimeoutError(
            f"Request timed out: {error}", timeout_seconds=ctx.timeout_seconds,
            provider_id=ctx.provider_id,
        )
    return NetworkError(
        f"Network error during API request: {error}", cause=error, provider_id=ctx.provider_id
    )


class Transport:
    """Executes built requests over pooled httpx clients."""

    def __init__(self, pool: Optional[ClientPool] = None):
        """
        Args:
            pool: Client pool to use. Defaults to the process-wide pool.
        """
        self._pool = pool

    @property
    def pool(self) -> ClientPool:
        if self._pool is not None:
            return self._pool
        from provider_bridge import state
        return state.get_client_pool()

    async def send(self, request: BuiltRequest, ctx: RequestContext) -> httpx.Response:
        """
        Execute a request and read the whole body.

        Raises:
            NetworkError, ProviderTimeoutError, CallCancelled
        """
        logger.debug(f"{request.method} {request.url} ({ctx.provider_id})")
        async with self.pool.lease(request.url) as client:
            built = client.build_request(**request.httpx_kwargs(), timeout=ctx.httpx_timeout())
            try:
                return await ctx.guard(client.send(built))
            except httpx.HTTPError as e:
                raise _map_httpx_error(e, ctx) from e

    @asynccontextmanager
    async def stream(self, request: BuiltRequest, ctx: RequestContext) -> AsyncIterator[httpx.Response]:
        """Open a streamed response; the body is read via iter_chunks()."""
        logger.debug(f"{request.method} {request.url} (stream, {ctx.provider_id})")
        async with self.pool.lease(request.url) as client:
            built = client.build_request(**request.httpx_kwargs(), timeout=ctx.httpx_timeout())
            try:
                response = await ctx.guard(client.send(built, stream=True))
            except httpx.HTTPError as e:
                raise _map_httpx_error(e, ctx) from e
            try:
                yield response
            finally:
                await response.aclose()

    async def iter_chunks(self, response: httpx.Response, ctx: RequestContext) -> AsyncIterator[bytes]:
        """Body bytes as they arrive, each read bounded by the context."""
        iterator = response.aiter_bytes().__aiter__()
        while True:
            try:
                chunk = await ctx.guard(iterator.__anext__())
            except StopAsyncIteration:
                return
            except httpx.HTTPError as e:
                raise _map_httpx_error(e, ctx) from e
            yield chunk
