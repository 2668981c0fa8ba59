"""
Provider descriptors - declarative records describing how to call one vendor.

Every vendor difference lives here as data: where the key goes, how the
body is encoded, how messages are laid out, how the stream is framed and
where the text sits in the response. Call sites never branch on vendor id.

The variant sets (BodyEncoding, AuthKind, StreamFormat, ResponseKind) are
closed enums. Code that dispatches on them ends in an `else` that raises
ConfigurationError, so a new member that is not handled fails loudly.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─────────────────────────────────────────────────────────────────────
# CLOSED VARIANT SETS
# ─────────────────────────────────────────────────────────────────────

class ProviderKind(str, Enum):
    CHAT = "chat"
    STT = "stt"


class BodyEncoding(str, Enum):
    """Outgoing request payload encoding."""
    JSON = "json"
    MULTIPART = "multipart"
    RAW = "raw"


class AuthKind(str, Enum):
    """Where the API key goes."""
    BEARER = "bearer"
    HEADER = "header"
    QUERY = "query"
    NONE = "none"


class StreamFormat(str, Enum):
    """Framing of a streamed response body."""
    NONE = "none"
    SSE = "sse"
    NDJSON = "ndjson"


class ResponseFormat(str, Enum):
    """Single-shot response body format."""
    JSON = "json"
    TEXT = "text"


class ResponseKind(str, Enum):
    """How the Response Interpreter treats a descriptor's reply."""
    STREAMING = "streaming"
    SINGLE = "single"
    JOB = "job"


# ─────────────────────────────────────────────────────────────────────
# DESCRIPTOR PARTS
# ─────────────────────────────────────────────────────────────────────

class AuthSpec(BaseModel):
    """
    Auth declaration. A descriptor may declare a header, a query parameter,
    both, or neither. When both are present the header is authoritative.
    """
    model_config = ConfigDict(extra="forbid")

    header: Optional[str] = None  # e.g. "Authorization", "x-api-key"
    scheme: Optional[str] = None  # e.g. "Bearer", "Token"; None sends the raw key
    query_param: Optional[str] = None  # e.g. "key"


class ChatLayout(BaseModel):
    """
    Message layout for chat vendors.

    Templates are JSON-shaped values with placeholders:
    {{ROLE}}, {{TEXT}} for messages and {{IMAGE}}, {{MIME}} for images.
    A string that is exactly a placeholder is replaced by the raw value.
    """
    model_config = ConfigDict(extra="forbid")

    messages_path: str = "messages"
    role_map: dict[str, str] = Field(default_factory=dict)
    system_path: Optional[str] = None  # None: prepend a system-role message
    message_template: Any = Field(
        default_factory=lambda: {"role": "{{ROLE}}", "content": "{{TEXT}}"}
    )
    user_template: Any = None  # falls back to message_template
    image_path: Optional[str] = None  # inside the rendered user turn
    image_template: Any = None


class RequestShape(BaseModel):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    body: BodyEncoding = BodyEncoding.JSON
    fields: dict[str, Any] = Field(default_factory=dict)  # static, keyed by field path
    voice_fields: dict[str, Any] = Field(default_factory=dict)  # short, low-temperature replies
    model_path: Optional[str] = "model"  # None: model travels in the endpoint
    audio_field: Optional[str] = None
    audio_format: str = "wav"
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    chat: ChatLayout = Field(default_factory=ChatLayout)


class ResponseShape(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content_path: Optional[str] = None  # single-shot text location
    delta_path: Optional[str] = None  # per-frame text location when streaming
    stream: StreamFormat = StreamFormat.NONE
    format: ResponseFormat = ResponseFormat.JSON
    done_sentinel: Optional[str] = "[DONE]"  # raw frame payload that ends a stream
    done_path: Optional[str] = None  # truthy field that ends an NDJSON stream
    error_event: Optional[str] = None  # SSE event name that carries a mid-stream failure
    error_path: Optional[str] = None  # field whose presence in a frame signals a failure


class ModelsShape(BaseModel):
    """How to ask a vendor for its model list and flatten the answer."""
    model_config = ConfigDict(extra="forbid")

    endpoint: str = "/v1/models"
    method: str = "GET"
    list_path: Optional[str] = "data"  # None: the body itself is the list
    id_path: Optional[str] = "id"  # None: items are plain strings
    strip_prefix: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)


class UploadSpec(BaseModel):
    """Optional first step of a job protocol: push the raw asset."""
    model_config = ConfigDict(extra="forbid")

    endpoint: str
    url_path: str = "upload_url"
    content_type: str = "application/octet-stream"
    asset_field: str = "audio_url"  # where the submit body references the asset


class PollSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint: str  # contains {job_id}
    status_path: str = "status"
    completed: list[str] = Field(default_factory=lambda: ["completed"])
    failed: list[str] = Field(default_factory=lambda: ["error", "failed"])
    error_path: Optional[str] = "error"
    pending_http_statuses: list[int] = Field(default_factory=lambda: [202, 404])
    interval_seconds: float = 0.5
    transcript_path: Optional[str] = None
    segments_path: Optional[str] = None
    segment_text_path: Optional[str] = None
    result_endpoint: Optional[str] = None  # fetched once after completion
    result_format: ResponseFormat = ResponseFormat.JSON


class JobSpec(BaseModel):
    """Submit/poll protocol for vendors that transcribe asynchronously."""
    model_config = ConfigDict(extra="forbid")

    upload: Optional[UploadSpec] = None
    id_path: str = "id"
    poll: PollSpec


class InputCapabilities(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image: bool = False
    audio: bool = False


# ─────────────────────────────────────────────────────────────────────
# PROVIDER DESCRIPTOR
# ─────────────────────────────────────────────────────────────────────

class ProviderDescriptor(BaseModel):
    """Declarative record describing how to call one vendor's HTTP API."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    kind: ProviderKind = ProviderKind.CHAT
    base_url: str
    endpoint: str = ""
    method: str = "POST"
    auth: AuthSpec = Field(default_factory=AuthSpec)
    request: RequestShape = Field(default_factory=RequestShape)
    response: ResponseShape = Field(default_factory=ResponseShape)
    default_model: str = ""
    models: list[str] = Field(default_factory=list)
    vision_models: list[str] = Field(default_factory=list)
    speed_rank: Optional[int] = None  # lower transcribes faster
    input: InputCapabilities = Field(default_factory=InputCapabilities)
    models_endpoint: Optional[ModelsShape] = None
    job: Optional[JobSpec] = None
    is_custom: bool = False

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("provider id must not be blank")
        return value

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def response_kind(self) -> ResponseKind:
        """Classify this descriptor's reply: job, streaming, or single-shot."""
        if self.job is not None:
            return ResponseKind.JOB
        if self.response.stream != StreamFormat.NONE:
            return ResponseKind.STREAMING
        return ResponseKind.SINGLE

    def url_for(self, endpoint: Optional[str] = None, **values: str) -> str:
        """Join base URL and endpoint, filling {model}/{job_id} placeholders."""
        path = self.endpoint if endpoint is None else endpoint
        for key, value in values.items():
            path = path.replace("{" + key + "}", value)
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"
