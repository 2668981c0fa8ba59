"""
Error taxonomy for provider calls.

Internal layers raise these; public entry points catch ProviderError and
hand it back as a value so callers branch on shape instead of try/except.
"""

from typing import Optional


class ProviderError(Exception):
    """Base class for every failure a provider call can produce."""

    kind: str = "provider"

    def __init__(self, message: str, provider_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id

    def describe(self) -> str:
        """One-line, user-facing description."""
        if self.provider_id:
            return f"[{self.provider_id}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class NetworkError(ProviderError):
    """Transport-level failure. The underlying exception is kept verbatim."""

    kind = "network"

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        provider_id: Optional[str] = None,
    ):
        super().__init__(message, provider_id)
        self.cause = cause


class HTTPStatusError(ProviderError):
    """Vendor answered with a non-2xx status."""

    kind = "http_status"

    def __init__(
        self,
        status_code: int,
        status_text: str,
        excerpt: str = "",
        provider_id: Optional[str] = None,
        vendor_message: Optional[str] = None,
    ):
        message = f"API request failed: {status_code} {status_text}".rstrip()
        if vendor_message:
            message += f" - {vendor_message}"
        elif excerpt:
            message += f" - {excerpt}"
        super().__init__(message, provider_id)
        self.status_code = status_code
        self.status_text = status_text
        self.excerpt = excerpt
        self.vendor_message = vendor_message


class ParseError(ProviderError):
    """Body could not be parsed, or the expected field path was absent."""

    kind = "parse"

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        provider_id: Optional[str] = None,
    ):
        if path:
            message = f"{message} (path: {path})"
        super().__init__(message, provider_id)
        self.path = path


class ConfigurationError(ProviderError):
    """Descriptor or input is unusable. Always raised before any network call."""

    kind = "configuration"


class JobFailure(ProviderError):
    """Vendor reported a terminal failure for an asynchronous job."""

    kind = "job_failure"

    def __init__(
        self,
        reason: str,
        job_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ):
        super().__init__(f"Transcription job failed: {reason}", provider_id)
        self.reason = reason
        self.job_id = job_id


class ProviderTimeoutError(ProviderError):
    """Call exceeded its deadline. Kept apart from NetworkError for UI messaging."""

    kind = "timeout"

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        provider_id: Optional[str] = None,
    ):
        if timeout_seconds is not None:
            message = f"{message} after {timeout_seconds:g}s"
        super().__init__(message, provider_id)
        self.timeout_seconds = timeout_seconds


class StreamError(ProviderError):
    """Vendor reported a failure inside an already-open stream."""

    kind = "stream_error"

    def __init__(
        self,
        message: str,
        vendor_message: Optional[str] = None,
        provider_id: Optional[str] = None,
    ):
        super().__init__(message, provider_id)
        self.vendor_message = vendor_message


class CallCancelled(ProviderError):
    """Call was cancelled by the caller or superseded by a newer call."""

    kind = "cancelled"

    def __init__(self, message: str = "Request cancelled", provider_id: Optional[str] = None):
        super().__init__(message, provider_id)


def is_error(value: object) -> bool:
    """True when a public entry point handed back a failure."""
    return isinstance(value, ProviderError)


def is_retryable(error: BaseException) -> bool:
    """
    Whether a caller-side retry policy should try again.

    Network failures, timeouts, rate limits and 5xx answers are transient;
    configuration, parse, job and cancellation failures are not.
    """
    if isinstance(error, (NetworkError, ProviderTimeoutError)):
        return True
    if isinstance(error, HTTPStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return False
