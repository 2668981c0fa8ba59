"""
Request builder - assembles outgoing requests from a descriptor, resolved
auth and the user's payload.

Nothing here touches the network. Every descriptor problem surfaces as a
ConfigurationError before the Transport is ever called.
"""

import base64
import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from provider_bridge.auth import ResolvedAuth
from provider_bridge.config import Message
from provider_bridge.descriptors import BodyEncoding, ProviderDescriptor
from provider_bridge.errors import ConfigurationError
from provider_bridge.paths import set_path
from provider_bridge.vision import supports_vision, vision_recommendation

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"

HistoryEntry = Union[Message, dict]


@dataclass
class BuiltRequest:
    """A fully assembled HTTP request, ready for the Transport."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    json_body: Optional[Any] = None
    content: Optional[bytes] = None
    data: Optional[dict[str, str]] = None
    files: Optional[dict[str, tuple]] = None

    def httpx_kwargs(self) -> dict:
        """Keyword arguments for httpx.AsyncClient.build_request()."""
        kwargs: dict[str, Any] = {
            "method": self.method,
            "url": self.url,
            "headers": self.headers,
        }
        if self.params:
            kwargs["params"] = self.params
        if self.json_body is not None:
            kwargs["json"] = self.json_body
        if self.content is not None:
            kwargs["content"] = self.content
        if self.data is not None:
            kwargs["data"] = self.data
        if self.files is not None:
            kwargs["files"] = self.files
        return kwargs


# ─────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────

def render_template(template: Any, values: dict[str, Any]) -> Any:
    """
    Fill {{NAME}} placeholders in a JSON-shaped template.

    A string that is exactly one placeholder becomes the raw value;
    placeholders inside longer strings are substituted as text.
    """
    if isinstance(template, str):
        for name, value in values.items():
            if template == "{{" + name + "}}":
                return value
        rendered = template
        for name, value in values.items():
            rendered = rendered.replace("{{" + name + "}}", str(value))
        return rendered
    if isinstance(template, dict):
        return {key: render_template(value, values) for key, value in template.items()}
    if isinstance(template, list):
        return [render_template(item, values) for item in template]
    return template


def split_image(image: str) -> tuple[str, str]:
    """Return (mime, base64) for a data URL or bare base64 string."""
    if image.startswith("data:") and "," in image:
        header, data = image.split(",", 1)
        mime = header[5:].split(";", 1)[0] or DEFAULT_IMAGE_MIME
        return mime, data
    return DEFAULT_IMAGE_MIME, image


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(key.lower() == name.lower() for key in headers)


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _static_body(descriptor: ProviderDescriptor) -> dict:
    body: dict = {}
    for path, value in descriptor.request.fields.items():
        set_path(body, path, copy.deepcopy(value))
    return body


def _role_content(entry: HistoryEntry) -> tuple[str, str]:
    if isinstance(entry, dict):
        return entry.get("role", "user"), entry.get("content", "")
    return entry.role, entry.content


def _base_headers(descriptor: ProviderDescriptor, auth: ResolvedAuth, **extra: str) -> dict[str, str]:
    headers = dict(extra)
    headers.update(descriptor.request.headers)
    headers.update(auth.headers)
    return headers


def _params(descriptor: ProviderDescriptor, auth: ResolvedAuth) -> dict[str, str]:
    params = dict(descriptor.request.query)
    params.update(auth.params)
    return params


# ─────────────────────────────────────────────────────────────────────
# CHAT
# ─────────────────────────────────────────────────────────────────────

def build_messages(
    descriptor: ProviderDescriptor,
    user_text: str,
    history: Iterable[HistoryEntry] = (),
    system_prompt: Optional[str] = None,
    image: Optional[str] = None,
    model: Optional[str] = None,
) -> list:
    """Render system, history and the user turn in the vendor's layout."""
    layout = descriptor.request.chat

    def role(name: str) -> str:
        return layout.role_map.get(name, name)

    messages: list = []
    if system_prompt and not layout.system_path:
        messages.append(render_template(
            layout.message_template, {"ROLE": role("system"), "TEXT": system_prompt}
        ))

    for entry in history:
        entry_role, content = _role_content(entry)
        if entry_role == "system" and layout.system_path:
            continue
        messages.append(render_template(
            layout.message_template, {"ROLE": role(entry_role), "TEXT": content}
        ))

    user_template = layout.user_template or layout.message_template
    user_turn = render_template(user_template, {"ROLE": role("user"), "TEXT": user_text})

    if image:
        if not supports_vision(descriptor, model):
            raise ConfigurationError(vision_recommendation(descriptor), provider_id=descriptor.id)
        if not layout.image_path or layout.image_template is None:
            raise ConfigurationError(
                "Descriptor accepts images but declares no image_path/image_template",
                provider_id=descriptor.id,
            )
        mime, data = split_image(image)
        set_path(user_turn, layout.image_path, render_template(
            layout.image_template, {"IMAGE": data, "MIME": mime}
        ))

    messages.append(user_turn)
    return messages


def build_chat_request(
    descriptor: ProviderDescriptor,
    auth: ResolvedAuth,
    model: str,
    user_text: str,
    history: Iterable[HistoryEntry] = (),
    system_prompt: Optional[str] = None,
    image: Optional[str] = None,
    voice: bool = False,
) -> BuiltRequest:
    """
    Assemble a chat/completion request.

    Static descriptor fields are laid down first (then the voice fields,
    when `voice` is set); model, messages and the system prompt are then
    written at their declared paths on top.
    """
    if descriptor.request.body != BodyEncoding.JSON:
        raise ConfigurationError(
            f"Chat requests require a json body, got {descriptor.request.body.value}",
            provider_id=descriptor.id,
        )
    layout = descriptor.request.chat
    body = _static_body(descriptor)
    if voice:
        for path, value in descriptor.request.voice_fields.items():
            set_path(body, path, copy.deepcopy(value))
    if descriptor.request.model_path:
        set_path(body, descriptor.request.model_path, model)
    if system_prompt and layout.system_path:
        set_path(body, layout.system_path, system_prompt)
    set_path(body, layout.messages_path, build_messages(
        descriptor, user_text, history, system_prompt, image, model
    ))

    return BuiltRequest(
        method=descriptor.method,
        url=descriptor.url_for(model=model),
        headers=_base_headers(descriptor, auth, **{"Content-Type": "application/json"}),
        params=_params(descriptor, auth),
        json_body=body,
    )


# ─────────────────────────────────────────────────────────────────────
# SPEECH-TO-TEXT
# ─────────────────────────────────────────────────────────────────────

def build_stt_request(
    descriptor: ProviderDescriptor,
    auth: ResolvedAuth,
    audio: bytes,
    model: Optional[str] = None,
) -> BuiltRequest:
    """
    Assemble a transcription (or job submit) request carrying the audio.

    - multipart: audio under `audio_field`, static fields as form values
    - json: base64 audio written at the `audio_field` path
    - raw: audio is the body; model (if any) travels as a query parameter
    """
    shape = descriptor.request
    encoding = shape.body
    audio_format = shape.audio_format
    url = descriptor.url_for(model=model or descriptor.default_model)
    params = _params(descriptor, auth)

    if encoding == BodyEncoding.MULTIPART:
        if not shape.audio_field:
            raise ConfigurationError("multipart body requires audio_field", provider_id=descriptor.id)
        data = {key: _form_value(value) for key, value in shape.fields.items()}
        if model and shape.model_path:
            data[shape.model_path] = model
        return BuiltRequest(
            method=descriptor.method,
            url=url,
            headers=_base_headers(descriptor, auth),
            params=params,
            data=data,
            files={shape.audio_field: (f"audio.{audio_format}", audio, f"audio/{audio_format}")},
        )
    elif encoding == BodyEncoding.JSON:
        if not shape.audio_field:
            raise ConfigurationError("json body requires audio_field", provider_id=descriptor.id)
        body = _static_body(descriptor)
        set_path(body, shape.audio_field, base64.b64encode(audio).decode("ascii"))
        if model and shape.model_path:
            set_path(body, shape.model_path, model)
        return BuiltRequest(
            method=descriptor.method,
            url=url,
            headers=_base_headers(descriptor, auth, **{"Content-Type": "application/json"}),
            params=params,
            json_body=body,
        )
    elif encoding == BodyEncoding.RAW:
        headers = _base_headers(descriptor, auth)
        if not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = f"audio/{audio_format}"
        if model and shape.model_path:
            params[shape.model_path] = model
        return BuiltRequest(
            method=descriptor.method,
            url=url,
            headers=headers,
            params=params,
            content=audio,
        )
    else:
        raise ConfigurationError(f"Unsupported body type: {encoding}", provider_id=descriptor.id)


# ─────────────────────────────────────────────────────────────────────
# JOB PROTOCOL STEPS
# ─────────────────────────────────────────────────────────────────────

def build_upload_request(
    descriptor: ProviderDescriptor, auth: ResolvedAuth, audio: bytes
) -> BuiltRequest:
    """Raw asset upload, the optional first step of a job protocol."""
    upload = descriptor.job.upload if descriptor.job else None
    if upload is None:
        raise ConfigurationError("Descriptor declares no upload step", provider_id=descriptor.id)
    headers = dict(auth.headers)
    headers["Content-Type"] = upload.content_type
    return BuiltRequest(
        method="POST",
        url=descriptor.url_for(upload.endpoint),
        headers=headers,
        params=dict(auth.params),
        content=audio,
    )


def build_asset_submit_request(
    descriptor: ProviderDescriptor,
    auth: ResolvedAuth,
    asset_url: str,
    model: Optional[str] = None,
) -> BuiltRequest:
    """Job submission that references an already uploaded asset."""
    upload = descriptor.job.upload if descriptor.job else None
    if upload is None:
        raise ConfigurationError("Descriptor declares no upload step", provider_id=descriptor.id)
    if descriptor.request.body != BodyEncoding.JSON:
        raise ConfigurationError(
            "Asset-referencing submit requires a json body", provider_id=descriptor.id
        )
    body = _static_body(descriptor)
    set_path(body, upload.asset_field, asset_url)
    if model and descriptor.request.model_path:
        set_path(body, descriptor.request.model_path, model)
    return BuiltRequest(
        method=descriptor.method,
        url=descriptor.url_for(),
        headers=_base_headers(descriptor, auth, **{"Content-Type": "application/json"}),
        params=_params(descriptor, auth),
        json_body=body,
    )


def build_poll_request(descriptor: ProviderDescriptor, auth: ResolvedAuth, url: str) -> BuiltRequest:
    """Status (or result) fetch for a submitted job. Auth only, no body."""
    return BuiltRequest(
        method="GET",
        url=url,
        headers=dict(auth.headers),
        params=dict(auth.params),
    )


# ─────────────────────────────────────────────────────────────────────
# MODEL LISTING
# ─────────────────────────────────────────────────────────────────────

def build_models_request(descriptor: ProviderDescriptor, auth: ResolvedAuth) -> BuiltRequest:
    listing = descriptor.models_endpoint
    if listing is None:
        raise ConfigurationError("Descriptor declares no models endpoint", provider_id=descriptor.id)
    headers = dict(descriptor.request.headers)
    headers.update(listing.headers)
    headers.update(auth.headers)
    return BuiltRequest(
        method=listing.method,
        url=descriptor.url_for(listing.endpoint),
        headers=headers,
        params=dict(auth.params),
    )
