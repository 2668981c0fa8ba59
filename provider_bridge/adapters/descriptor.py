"""
DescriptorAdapter - HostAdapter implementation driven entirely by a
ProviderDescriptor.

One class serves every vendor. The descriptor decides how the request is
built, where the key goes and how the reply is read; this module only
sequences builder -> transport -> interpreter and turns raised
ProviderErrors into returned values.
"""

import logging
from typing import AsyncGenerator, Optional, Union

from provider_bridge.adapters.schema import ChatTask, SpeechTask
from provider_bridge.auth import resolve_auth
from provider_bridge.builder import build_chat_request, build_stt_request
from provider_bridge.config import get_stt_timeout_seconds, get_timeout_seconds
from provider_bridge.descriptors import ProviderDescriptor, ResponseKind
from provider_bridge.errors import CallCancelled, ConfigurationError, ProviderError
from provider_bridge.interpreter import check_status, classify, extract_single
from provider_bridge.jobs import JobPoller
from provider_bridge.listing import list_models
from provider_bridge.pool import ResponseCache
from provider_bridge.streaming import StreamStats, decode_stream
from provider_bridge.transport import CallSession, RequestContext, Transport

logger = logging.getLogger(__name__)


class DescriptorAdapter:
    """
    HostAdapter for any provider expressible as a descriptor.

    Calls made through one adapter share a CallSession: starting a new
    completion or transcription cancels the one still in flight. Pass the
    same CallSession to several adapters to extend that across providers.
    """

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: str = "",
        model: Optional[str] = None,
        transport: Optional[Transport] = None,
        calls: Optional[CallSession] = None,
        cache: Optional[ResponseCache] = None,
    ):
        """
        Args:
            descriptor: How to talk to the vendor
            api_key: Key for the vendor (may be empty for auth-less providers)
            model: Model id; defaults to the descriptor's default_model
            transport: HTTP transport; defaults to one over the shared pool
            calls: Session that tracks the active call
            cache: Response cache; defaults to the shared cache when enabled
        """
        self.descriptor = descriptor
        self._api_key = api_key
        self._model = model
        self._transport = transport or Transport()
        self.calls = calls or CallSession()
        self._cache = cache
        self.last_stats: Optional[StreamStats] = None

    @property
    def model(self) -> str:
        return self._model or self.descriptor.default_model

    def _response_cache(self) -> Optional[ResponseCache]:
        if self._cache is not None:
            return self._cache
        from provider_bridge import state
        return state.get_response_cache()

    def cancel(self) -> None:
        """Cancel whatever call is in flight."""
        self.calls.cancel()

    # ─────────────────────────────────────────────────────────────────
    # MODELS
    # ─────────────────────────────────────────────────────────────────

    async def get_available_models(self) -> Union[list[str], ProviderError]:
        return await list_models(self.descriptor, self._api_key, transport=self._transport)

    # ─────────────────────────────────────────────────────────────────
    # CHAT
    # ─────────────────────────────────────────────────────────────────

    async def _generate(
        self, task: ChatTask, ctx: RequestContext
    ) -> AsyncGenerator[Union[str, ProviderError], None]:
        descriptor = self.descriptor
        model = task.model or self.model
        cache = None if task.image else self._response_cache()
        prompt = task.cache_prompt()

        if cache is not None:
            cached = cache.get(descriptor.id, model, prompt)
            if cached is not None:
                logger.debug(f"{descriptor.id}/{model}: served from cache")
                ctx.append(cached)
                yield cached
                return

        try:
            auth = resolve_auth(descriptor, self._api_key)
            request = build_chat_request(
                descriptor, auth, model, task.user_text,
                history=task.history, system_prompt=task.system_prompt, image=task.image,
                voice=task.voice,
            )
            kind = classify(descriptor)
            if kind == ResponseKind.STREAMING:
                stats = self.last_stats = StreamStats()
                async with self._transport.stream(request, ctx) as response:
                    error = await check_status(response, descriptor.id)
                    if error is not None:
                        logger.warning(f"{descriptor.id}: {error.message}")
                        yield error
                        return
                    chunks = self._transport.iter_chunks(response, ctx)
                    async for delta in decode_stream(chunks, descriptor, ctx, stats):
                        yield delta
            elif kind == ResponseKind.SINGLE:
                response = await self._transport.send(request, ctx)
                error = await check_status(response, descriptor.id)
                if error is not None:
                    logger.warning(f"{descriptor.id}: {error.message}")
                    yield error
                    return
                text = extract_single(response, descriptor)
                if ctx.cancelled:
                    return
                ctx.append(text)
                if text:
                    yield text
            elif kind == ResponseKind.JOB:
                raise ConfigurationError(
                    "Job-based descriptors cannot serve chat completions", provider_id=descriptor.id
                )
            else:
                raise ConfigurationError(f"Unhandled response kind: {kind}", provider_id=descriptor.id)
        except CallCancelled:
            return
        except ProviderError as e:
            if ctx.cancelled:
                return
            logger.warning(f"{descriptor.id}: {e.message}")
            yield e
            return

        if cache is not None and not ctx.cancelled and ctx.text:
            cache.put(descriptor.id, model, prompt, ctx.text)

    async def stream_completion(self, task: ChatTask) -> AsyncGenerator[Union[str, ProviderError], None]:
        """
        Stream a completion as text deltas.

        A failure arrives as a final ProviderError item. When the call is
        cancelled or superseded the stream ends without further items.
        """
        timeout = task.timeout_seconds or get_timeout_seconds()
        ctx = self.calls.begin(self.descriptor, self._api_key, timeout)
        try:
            async for item in self._generate(task, ctx):
                yield item
        finally:
            self.calls.finish(ctx)

    async def complete(self, task: ChatTask) -> Union[str, ProviderError]:
        """Collect a whole completion. Cancellation returns CallCancelled."""
        timeout = task.timeout_seconds or get_timeout_seconds()
        ctx = self.calls.begin(self.descriptor, self._api_key, timeout)
        try:
            async for item in self._generate(task, ctx):
                if isinstance(item, ProviderError):
                    return item
        finally:
            self.calls.finish(ctx)
        if ctx.cancelled:
            return CallCancelled(
                f"Request {ctx.token.reason or 'cancelled'}", provider_id=self.descriptor.id
            )
        return ctx.text

    # ─────────────────────────────────────────────────────────────────
    # SPEECH-TO-TEXT
    # ─────────────────────────────────────────────────────────────────

    async def transcribe(self, task: SpeechTask) -> Union[str, ProviderError]:
        descriptor = self.descriptor
        timeout = task.timeout_seconds or get_stt_timeout_seconds()
        ctx = self.calls.begin(descriptor, self._api_key, timeout)
        try:
            if not task.audio:
                raise ConfigurationError("No audio provided", provider_id=descriptor.id)
            auth = resolve_auth(descriptor, self._api_key)
            model = task.model or self.model or None
            kind = classify(descriptor)
            if kind == ResponseKind.JOB:
                transcript = await JobPoller(self._transport).run(descriptor, auth, task.audio, ctx, model)
            elif kind == ResponseKind.SINGLE:
                request = build_stt_request(descriptor, auth, task.audio, model)
                response = await self._transport.send(request, ctx)
                error = await check_status(response, descriptor.id)
                if error is not None:
                    raise error
                transcript = extract_single(response, descriptor)
            elif kind == ResponseKind.STREAMING:
                raise ConfigurationError(
                    "Streaming transcription is not supported", provider_id=descriptor.id
                )
            else:
                raise ConfigurationError(f"Unhandled response kind: {kind}", provider_id=descriptor.id)
        except ProviderError as e:
            logger.warning(f"{descriptor.id}: {e.message}")
            return e
        finally:
            self.calls.finish(ctx)

        logger.debug(f"{descriptor.id}: transcript of {len(transcript)} chars")
        return transcript
