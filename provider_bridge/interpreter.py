"""
Response interpreter - classifies a descriptor's reply and turns non-2xx
responses into structured failures.
"""

import json
import logging
from typing import Any, Optional

import httpx

from provider_bridge.config import ERROR_EXCERPT_CHARS
from provider_bridge.descriptors import ProviderDescriptor, ResponseFormat, ResponseKind
from provider_bridge.errors import ConfigurationError, HTTPStatusError, ParseError
from provider_bridge.paths import MISSING, get_path

logger = logging.getLogger(__name__)


def classify(descriptor: ProviderDescriptor) -> ResponseKind:
    """Streaming, single JSON/text payload, or job-based."""
    kind = descriptor.response_kind
    if kind in (ResponseKind.STREAMING, ResponseKind.SINGLE, ResponseKind.JOB):
        return kind
    raise ConfigurationError(f"Unhandled response kind: {kind}", provider_id=descriptor.id)


def vendor_error_message(body: bytes) -> Optional[str]:
    """Pull a human-readable message out of a vendor error body, if any."""
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
    elif isinstance(error, str) and error:
        return error
    for key in ("message", "detail", "err_msg"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


async def check_status(
    response: httpx.Response, provider_id: Optional[str] = None
) -> Optional[HTTPStatusError]:
    """
    Return None for a 2xx response, otherwise an HTTPStatusError value.

    The body is read best-effort as a diagnostic excerpt. Never raises.
    """
    if response.is_success:
        return None
    try:
        body = await response.aread()
    except (httpx.HTTPError, httpx.StreamError) as e:
        logger.debug(f"Could not read error body: {e}")
        body = b""
    excerpt = body.decode("utf-8", errors="replace")[:ERROR_EXCERPT_CHARS]
    return HTTPStatusError(
        status_code=response.status_code,
        status_text=response.reason_phrase,
        excerpt=excerpt,
        provider_id=provider_id,
        vendor_message=vendor_error_message(body),
    )


def parse_json(response: httpx.Response, provider_id: Optional[str] = None) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"Failed to parse JSON response: {e}", provider_id=provider_id) from e


def extract_text(data: Any, path: str, provider_id: Optional[str] = None) -> str:
    """Text at `path`, or ParseError naming the path."""
    value = get_path(data, path)
    if value is MISSING:
        raise ParseError("Expected field missing from response", path=path, provider_id=provider_id)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ParseError("Expected text, found a structure", path=path, provider_id=provider_id)
    return str(value)


def extract_single(response: httpx.Response, descriptor: ProviderDescriptor) -> str:
    """Parse a single-shot body once and pull the text out of it."""
    fmt = descriptor.response.format
    if fmt == ResponseFormat.TEXT:
        return response.text.strip()
    elif fmt == ResponseFormat.JSON:
        path = descriptor.response.content_path
        if not path:
            raise ConfigurationError("Descriptor declares no content_path", provider_id=descriptor.id)
        data = parse_json(response, descriptor.id)
        return extract_text(data, path, descriptor.id).strip()
    else:
        raise ConfigurationError(f"Unsupported response format: {fmt}", provider_id=descriptor.id)
