"""
Streaming decoder - turns raw incremental bytes into text deltas.

Frames may be split across reads at any byte, including inside a UTF-8
sequence. Splitters buffer the incomplete remainder and only hand out
frames at a recognized boundary. A malformed frame is dropped and counted;
the rest of the stream keeps flowing.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterable, Iterator, Optional

from provider_bridge.descriptors import ProviderDescriptor, ResponseShape, StreamFormat
from provider_bridge.config import ERROR_EXCERPT_CHARS
from provider_bridge.errors import ConfigurationError, StreamError
from provider_bridge.paths import get_path
from provider_bridge.transport import RequestContext

logger = logging.getLogger(__name__)


@dataclass
class Frame:
    data: str
    event: Optional[str] = None


@dataclass
class StreamStats:
    """Per-stream counters, surfaced so vendor protocol drift is visible."""

    frames: int = 0
    deltas: int = 0
    dropped_frames: int = 0
    dropped_samples: list[str] = field(default_factory=list)

    def record_drop(self, payload: str) -> None:
        self.dropped_frames += 1
        if len(self.dropped_samples) < 5:
            self.dropped_samples.append(payload[:200])


# ─────────────────────────────────────────────────────────────────────
# FRAME SPLITTERS
# ─────────────────────────────────────────────────────────────────────

class SSEFrameSplitter:
    """Server-sent events: blank-line delimited blocks of `field: value` lines."""

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> list[Frame]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        blocks = self._buffer.split("\n\n")
        self._buffer = blocks.pop()
        return [frame for frame in map(self._parse_block, blocks) if frame is not None]

    def flush(self) -> list[Frame]:
        remainder, self._buffer = self._buffer, ""
        frame = self._parse_block(remainder)
        return [frame] if frame is not None else []

    @staticmethod
    def _parse_block(block: str) -> Optional[Frame]:
        data_lines = []
        event = None
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "data":
                data_lines.append(value)
            elif name == "event":
                event = value
        if not data_lines:
            return None
        return Frame(data="\n".join(data_lines), event=event)


class NDJSONFrameSplitter:
    """Newline-delimited JSON: one frame per non-empty line."""

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> list[Frame]:
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [Frame(data=line.strip()) for line in lines if line.strip()]

    def flush(self) -> list[Frame]:
        remainder, self._buffer = self._buffer.strip(), ""
        return [Frame(data=remainder)] if remainder else []


def make_splitter(fmt: StreamFormat):
    if fmt == StreamFormat.SSE:
        return SSEFrameSplitter()
    elif fmt == StreamFormat.NDJSON:
        return NDJSONFrameSplitter()
    elif fmt == StreamFormat.NONE:
        raise ConfigurationError("Descriptor is not streaming")
    else:
        raise ConfigurationError(f"Unsupported stream format: {fmt}")


# ─────────────────────────────────────────────────────────────────────
# DECODING
# ─────────────────────────────────────────────────────────────────────

def _stream_error(
    payload: str, data: Any, shape: ResponseShape, provider_id: Optional[str]
) -> StreamError:
    detail = get_path(data, shape.error_path, None) if shape.error_path else None
    if isinstance(detail, dict):
        detail = detail.get("message")
    vendor_message = detail if isinstance(detail, str) and detail else None
    reason = vendor_message or payload[:ERROR_EXCERPT_CHARS] or "unknown error"
    return StreamError(
        f"Stream failed: {reason}", vendor_message=vendor_message, provider_id=provider_id
    )


def frame_delta(
    frame: Frame, shape: ResponseShape, stats: StreamStats, provider_id: Optional[str] = None
) -> tuple[Optional[str], bool]:
    """
    Interpret one frame.

    Returns:
        (delta or None, stream_finished)

    Raises:
        StreamError: The frame is the vendor's error event, or carries a
            value at the descriptor's error_path
    """
    stats.frames += 1
    payload = frame.data.strip()
    if shape.done_sentinel and payload == shape.done_sentinel:
        return None, True
    try:
        data = json.loads(payload)
    except ValueError:
        if shape.error_event and frame.event == shape.error_event:
            raise _stream_error(payload, None, shape, provider_id) from None
        stats.record_drop(payload)
        logger.warning(f"Dropped malformed stream frame ({stats.dropped_frames} so far): {payload[:80]!r}")
        return None, False

    if shape.error_event and frame.event == shape.error_event:
        raise _stream_error(payload, data, shape, provider_id)
    if shape.error_path and get_path(data, shape.error_path, None):
        raise _stream_error(payload, data, shape, provider_id)

    finished = bool(shape.done_path and get_path(data, shape.done_path, False))
    delta = get_path(data, shape.delta_path) if shape.delta_path else None
    if isinstance(delta, str) and delta:
        return delta, finished
    return None, finished


async def decode_stream(
    chunks: AsyncIterable[bytes],
    descriptor: ProviderDescriptor,
    ctx: Optional[RequestContext] = None,
    stats: Optional[StreamStats] = None,
) -> AsyncGenerator[str, None]:
    """
    Lazily decode a streamed body into text deltas.

    Ends on the vendor's end sentinel/end field, when the body closes, or
    when `ctx` is cancelled. Nothing is yielded once the token has fired.
    Each delta is also appended to the context buffer.
    """
    shape = descriptor.response
    if not shape.delta_path:
        raise ConfigurationError("Streaming descriptor declares no delta_path", provider_id=descriptor.id)
    stats = stats if stats is not None else StreamStats()
    splitter = make_splitter(shape.stream)
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def cancelled() -> bool:
        return ctx is not None and ctx.cancelled

    def emit(frames: list[Frame]) -> Iterator[Optional[str]]:
        for frame in frames:
            delta, finished = frame_delta(frame, shape, stats, descriptor.id)
            if delta is not None:
                yield delta
            if finished:
                yield None
                return

    async for chunk in chunks:
        if cancelled():
            return
        for delta in emit(splitter.feed(decoder.decode(chunk))):
            if delta is None or cancelled():
                return
            stats.deltas += 1
            if ctx is not None:
                ctx.append(delta)
            yield delta

    tail = splitter.feed(decoder.decode(b"", final=True)) + splitter.flush()
    for delta in emit(tail):
        if delta is None or cancelled():
            return
        stats.deltas += 1
        if ctx is not None:
            ctx.append(delta)
        yield delta

    if stats.dropped_frames:
        logger.warning(
            f"{descriptor.id}: stream finished with {stats.dropped_frames} dropped frame(s)"
        )
