"""
Job poller - drives asynchronous vendor transcription jobs.

Two-step protocols (submit, then poll a URL derived from the job id) and
three-step protocols (upload the asset, submit a job referencing it, poll)
share one flow: optional upload -> submit -> poll loop.

The loop has no attempt cap. It ends on a terminal vendor status, on
cancellation, or when the RequestContext deadline passes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from provider_bridge.auth import ResolvedAuth
from provider_bridge.builder import (
    BuiltRequest,
    build_asset_submit_request,
    build_poll_request,
    build_stt_request,
    build_upload_request,
)
from provider_bridge.descriptors import JobSpec, PollSpec, ProviderDescriptor, ResponseFormat
from provider_bridge.errors import (
    CallCancelled,
    ConfigurationError,
    JobFailure,
    ParseError,
    ProviderTimeoutError,
)
from provider_bridge.interpreter import check_status, extract_text, parse_json
from provider_bridge.paths import MISSING, get_path
from provider_bridge.transport import RequestContext, Transport

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED
})


@dataclass
class Job:
    """One submitted vendor job. Only the poller mutates it."""

    job_id: str
    poll_url: str
    state: JobState = JobState.SUBMITTED
    ticks: int = 0
    transcript: Optional[str] = None
    failure_reason: Optional[str] = None
    transitions: list[JobState] = field(default_factory=lambda: [JobState.SUBMITTED])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def move_to(self, state: JobState) -> None:
        if self.state != state:
            self.state = state
            self.transitions.append(state)


def join_segments(segments: Any, text_path: Optional[str], provider_id: Optional[str] = None) -> str:
    """Concatenate segment texts in order with single spaces."""
    if not isinstance(segments, list):
        raise ParseError("Expected a list of transcript segments", provider_id=provider_id)
    texts = []
    for segment in segments:
        text = get_path(segment, text_path) if text_path else segment
        if isinstance(text, str) and text.strip():
            texts.append(text.strip())
    return " ".join(texts)


class JobPoller:
    """Runs upload/submit/poll for descriptors that declare a job protocol."""

    def __init__(self, transport: Transport):
        self._transport = transport

    @staticmethod
    def _spec(descriptor: ProviderDescriptor) -> JobSpec:
        if descriptor.job is None:
            raise ConfigurationError("Descriptor declares no job protocol", provider_id=descriptor.id)
        return descriptor.job

    async def _send_json(self, request: BuiltRequest, ctx: RequestContext) -> Any:
        response = await self._transport.send(request, ctx)
        error = await check_status(response, ctx.provider_id)
        if error is not None:
            raise error
        return parse_json(response, ctx.provider_id)

    async def run(
        self,
        descriptor: ProviderDescriptor,
        auth: ResolvedAuth,
        audio: bytes,
        ctx: RequestContext,
        model: Optional[str] = None,
    ) -> str:
        """Full protocol. Returns the transcript or raises a ProviderError."""
        spec = self._spec(descriptor)
        if spec.upload is not None:
            asset_url = await self.upload(descriptor, auth, audio, ctx)
            request = build_asset_submit_request(descriptor, auth, asset_url, model)
        else:
            request = build_stt_request(descriptor, auth, audio, model)
        job = await self.submit(descriptor, request, ctx)
        return await self.poll(job, descriptor, auth, ctx)

    async def upload(
        self,
        descriptor: ProviderDescriptor,
        auth: ResolvedAuth,
        audio: bytes,
        ctx: RequestContext,
    ) -> str:
        upload = self._spec(descriptor).upload
        data = await self._send_json(build_upload_request(descriptor, auth, audio), ctx)
        asset_url = get_path(data, upload.url_path)
        if not asset_url:
            raise ParseError("Upload URL not received", path=upload.url_path, provider_id=descriptor.id)
        logger.debug(f"{descriptor.id}: uploaded asset")
        return str(asset_url)

    async def submit(
        self,
        descriptor: ProviderDescriptor,
        request: BuiltRequest,
        ctx: RequestContext,
    ) -> Job:
        spec = self._spec(descriptor)
        data = await self._send_json(request, ctx)
        job_id = get_path(data, spec.id_path)
        if job_id is MISSING or job_id in (None, ""):
            raise ParseError("Job ID not found in response", path=spec.id_path, provider_id=descriptor.id)
        job_id = str(job_id)
        logger.info(f"{descriptor.id}: submitted job {job_id}")
        return Job(job_id=job_id, poll_url=descriptor.url_for(spec.poll.endpoint, job_id=job_id))

    async def poll(
        self,
        job: Job,
        descriptor: ProviderDescriptor,
        auth: ResolvedAuth,
        ctx: RequestContext,
    ) -> str:
        """
        Poll until the job reaches a terminal state.

        Raises:
            JobFailure: Vendor reported a terminal failure
            ProviderTimeoutError: Context deadline passed (job -> TIMED_OUT)
            CallCancelled: Context was cancelled (job -> CANCELLED)
        """
        poll = self._spec(descriptor).poll
        completed = {status.lower() for status in poll.completed}
        failed = {status.lower() for status in poll.failed}
        job.move_to(JobState.POLLING)

        try:
            while True:
                job.ticks += 1
                response = await self._transport.send(
                    build_poll_request(descriptor, auth, job.poll_url), ctx
                )
                if response.status_code in poll.pending_http_statuses:
                    logger.debug(f"{descriptor.id}: job {job.job_id} not ready (HTTP {response.status_code})")
                    await ctx.sleep(poll.interval_seconds)
                    continue

                error = await check_status(response, descriptor.id)
                if error is not None:
                    job.failure_reason = error.message
                    job.move_to(JobState.FAILED)
                    raise error
                data = parse_json(response, descriptor.id)
                status = get_path(data, poll.status_path, "")
                status = str(status).lower() if status is not None else ""

                if status in completed:
                    transcript = await self._collect(job, data, poll, descriptor, auth, ctx)
                    job.transcript = transcript
                    job.move_to(JobState.COMPLETED)
                    return transcript
                if status in failed:
                    reason = get_path(data, poll.error_path, None) if poll.error_path else None
                    job.failure_reason = str(reason or status)
                    job.move_to(JobState.FAILED)
                    raise JobFailure(job.failure_reason, job_id=job.job_id, provider_id=descriptor.id)

                logger.debug(f"{descriptor.id}: job {job.job_id} status '{status}'")
                await ctx.sleep(poll.interval_seconds)
        except ProviderTimeoutError:
            job.move_to(JobState.TIMED_OUT)
            raise
        except CallCancelled:
            job.move_to(JobState.CANCELLED)
            raise

    async def _collect(
        self,
        job: Job,
        data: Any,
        poll: PollSpec,
        descriptor: ProviderDescriptor,
        auth: ResolvedAuth,
        ctx: RequestContext,
    ) -> str:
        """Transcript for a completed job, fetching the result if declared."""
        if poll.result_endpoint:
            url = descriptor.url_for(poll.result_endpoint, job_id=job.job_id)
            response = await self._transport.send(build_poll_request(descriptor, auth, url), ctx)
            error = await check_status(response, descriptor.id)
            if error is not None:
                raise error
            if poll.result_format == ResponseFormat.TEXT:
                return response.text.strip()
            data = parse_json(response, descriptor.id)

        if poll.segments_path:
            segments = get_path(data, poll.segments_path)
            if segments is MISSING:
                raise ParseError("Transcript segments missing", path=poll.segments_path, provider_id=descriptor.id)
            return join_segments(segments, poll.segment_text_path, descriptor.id)
        if poll.transcript_path:
            return extract_text(data, poll.transcript_path, descriptor.id).strip()
        raise ConfigurationError(
            "Job protocol declares no transcript_path, segments_path or result_endpoint",
            provider_id=descriptor.id,
        )
