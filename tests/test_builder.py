"""Tests for request assembly across body encodings and chat layouts."""

import base64
import pytest

from provider_bridge.auth import resolve_auth
from provider_bridge.builder import (
    build_chat_request,
    build_models_request,
    build_poll_request,
    build_stt_request,
    render_template,
    split_image,
)
from provider_bridge.config import Message
from provider_bridge.descriptors import BodyEncoding
from provider_bridge.errors import ConfigurationError
from provider_bridge.registry import ProviderRegistry

from tests.conftest import MOCK_API_KEY, MOCK_BASE_URL, make_descriptor, make_stt_descriptor

AUDIO = b"RIFF\x00\x00fake-wav"
IMAGE = "data:image/png;base64,iVBORw0KGgo="


@pytest.fixture(scope="module")
def registry():
    return ProviderRegistry.builtin()


def chat_request(descriptor, **kwargs):
    auth = resolve_auth(descriptor, MOCK_API_KEY)
    model = kwargs.pop("model", descriptor.default_model)
    return build_chat_request(descriptor, auth, model, kwargs.pop("user_text", "Hello"), **kwargs)


class TestTemplates:
    def test_exact_placeholder_keeps_raw_value(self):
        assert render_template("{{TEXT}}", {"TEXT": ["a"]}) == ["a"]

    def test_embedded_placeholder_is_text(self):
        rendered = render_template({"url": "data:{{MIME}};base64,{{IMAGE}}"}, {"MIME": "image/png", "IMAGE": "QQ=="})
        assert rendered == {"url": "data:image/png;base64,QQ=="}

    def test_split_image(self):
        assert split_image(IMAGE) == ("image/png", "iVBORw0KGgo=")
        assert split_image("QUJD") == ("image/jpeg", "QUJD")


# ─────────────────────────────────────────────────────────────────────
# Chat layouts
# ─────────────────────────────────────────────────────────────────────


class TestChatLayouts:
    def test_openai_shape(self, registry):
        request = chat_request(
            registry.require("openai"),
            history=[Message(role="user", content="Hi"), Message(role="assistant", content="Hey")],
            system_prompt="Be brief",
        )
        body = request.json_body
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == f"Bearer {MOCK_API_KEY}"
        assert body["model"] == "gpt-4o-mini"
        assert body["stream"] is True
        assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
        assert body["messages"][0]["content"] == "Be brief"
        assert body["messages"][-1]["content"] == [{"type": "text", "text": "Hello"}]

    def test_claude_system_is_top_level(self, registry):
        request = chat_request(
            registry.require("claude"),
            history=[{"role": "system", "content": "ignored"}, {"role": "user", "content": "Hi"}],
            system_prompt="Be brief",
        )
        body = request.json_body
        assert body["system"] == "Be brief"
        assert body["max_tokens"] == 1024
        assert [m["role"] for m in body["messages"]] == ["user", "user"]
        assert request.headers["x-api-key"] == MOCK_API_KEY
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in request.headers

    def test_gemini_contents_and_query_key(self, registry):
        request = chat_request(
            registry.require("gemini"),
            history=[Message(role="assistant", content="Earlier answer")],
            system_prompt="Be brief",
        )
        body = request.json_body
        assert request.url == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:streamGenerateContent"
        )
        assert request.params == {"alt": "sse", "key": MOCK_API_KEY}
        assert "model" not in body
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert body["contents"] == [
            {"role": "model", "parts": [{"text": "Earlier answer"}]},
            {"role": "user", "parts": [{"text": "Hello"}]},
        ]

    def test_gemini_image_part(self, registry):
        request = chat_request(registry.require("gemini"), image=IMAGE)
        parts = request.json_body["contents"][-1]["parts"]
        assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": "iVBORw0KGgo="}}

    def test_claude_image_part(self, registry):
        request = chat_request(registry.require("claude"), image=IMAGE)
        content = request.json_body["messages"][-1]["content"]
        assert content[1]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}

    def test_image_on_non_vision_model_is_rejected(self, registry):
        with pytest.raises(ConfigurationError, match="vision models"):
            chat_request(registry.require("openai"), model="gpt-3.5-turbo", image=IMAGE)

    def test_image_on_provider_without_image_input(self, registry):
        with pytest.raises(ConfigurationError, match="does not support image input"):
            chat_request(registry.require("openrouter"), image=IMAGE)

    def test_static_fields_are_not_shared_between_requests(self):
        descriptor = make_descriptor(request={"fields": {"options": {"temperature": 0.2}}})
        first = chat_request(descriptor)
        first.json_body["options"]["temperature"] = 1.0
        assert chat_request(descriptor).json_body["options"] == {"temperature": 0.2}

    def test_non_json_chat_body_is_rejected(self):
        descriptor = make_descriptor(request={"body": "multipart"})
        with pytest.raises(ConfigurationError):
            chat_request(descriptor)


# ─────────────────────────────────────────────────────────────────────
# STT encodings
# ─────────────────────────────────────────────────────────────────────


class TestSTTEncodings:
    def test_multipart(self):
        descriptor = make_stt_descriptor(request={
            "body": "multipart",
            "audio_field": "file",
            "fields": {"response_format": "text", "timestamps": False, "config": {"a": 1}},
        })
        request = build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO, "whisper-1")
        assert request.files == {"file": ("audio.wav", AUDIO, "audio/wav")}
        assert request.data == {
            "response_format": "text",
            "timestamps": "false",
            "config": '{"a": 1}',
            "model": "whisper-1",
        }
        assert request.json_body is None and request.content is None

    def test_json_writes_base64_at_audio_path(self):
        descriptor = make_stt_descriptor(request={
            "body": "json",
            "audio_field": "audio.content",
            "model_path": "config.model",
            "fields": {"config": {"languageCode": "en-US"}},
        })
        request = build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO, "latest_long")
        body = request.json_body
        assert body["audio"]["content"] == base64.b64encode(AUDIO).decode("ascii")
        assert body["config"] == {"languageCode": "en-US", "model": "latest_long"}
        assert request.headers["Content-Type"] == "application/json"

    def test_raw_body_with_model_as_query(self):
        descriptor = make_stt_descriptor(
            auth={"header": "Authorization", "scheme": "Token"},
            request={"body": "raw", "query": {"smart_format": "true"}},
        )
        request = build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO, "nova-2")
        assert request.content == AUDIO
        assert request.headers["Content-Type"] == "audio/wav"
        assert request.headers["Authorization"] == "Token k"
        assert request.params == {"smart_format": "true", "model": "nova-2"}

    def test_raw_body_keeps_declared_content_type(self):
        descriptor = make_stt_descriptor(request={"body": "raw", "headers": {"content-type": "audio/webm"}})
        request = build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO)
        assert request.headers["content-type"] == "audio/webm"
        assert "Content-Type" not in request.headers

    def test_unsupported_body_encoding(self):
        descriptor = make_stt_descriptor()
        descriptor.request.body = "xml"
        with pytest.raises(ConfigurationError, match="Unsupported body type"):
            build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO)

    def test_multipart_without_audio_field(self):
        descriptor = make_stt_descriptor(request={"body": "multipart"})
        with pytest.raises(ConfigurationError):
            build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO)

    def test_httpx_kwargs_only_carry_set_parts(self):
        descriptor = make_stt_descriptor(request={"body": BodyEncoding.RAW})
        kwargs = build_stt_request(descriptor, resolve_auth(descriptor, "k"), AUDIO).httpx_kwargs()
        assert set(kwargs) == {"method", "url", "headers", "content"}


class TestOtherRequests:
    def test_poll_request_carries_auth_only(self):
        descriptor = make_stt_descriptor(auth={"query_param": "key"}, request={"headers": {"X-Extra": "1"}})
        request = build_poll_request(descriptor, resolve_auth(descriptor, "k"), f"{MOCK_BASE_URL}/jobs/1")
        assert request.method == "GET"
        assert request.params == {"key": "k"}
        assert request.headers == {}

    def test_models_request(self):
        descriptor = make_descriptor()
        request = build_models_request(descriptor, resolve_auth(descriptor, "k"))
        assert request.url == f"{MOCK_BASE_URL}/v1/models"
        assert request.headers["Authorization"] == "Bearer k"


# ─────────────────────────────────────────────────────────────────────
# Voice replies
# ─────────────────────────────────────────────────────────────────────


class TestVoiceFields:
    def test_not_applied_by_default(self, registry):
        body = chat_request(registry.require("openai")).json_body
        assert "max_tokens" not in body
        assert "temperature" not in body

    def test_openai_voice_params(self, registry):
        body = chat_request(registry.require("openai"), voice=True).json_body
        assert body["temperature"] == 0.01
        assert body["top_p"] == 0.2
        assert body["max_tokens"] == 30
        assert body["presence_penalty"] == 0.3
        assert body["model"] == "gpt-4o-mini"

    def test_claude_voice_overrides_static_max_tokens(self, registry):
        descriptor = registry.require("claude")
        assert chat_request(descriptor).json_body["max_tokens"] == 1024
        body = chat_request(descriptor, voice=True).json_body
        assert body["max_tokens"] == 30
        assert body["top_k"] == 1

    def test_nested_paths(self, registry):
        gemini = chat_request(registry.require("gemini"), voice=True).json_body
        assert gemini["generationConfig"] == {"temperature": 0.01, "topP": 0.2, "maxOutputTokens": 30}
        ollama = chat_request(registry.require("ollama"), voice=True).json_body
        assert ollama["options"]["num_predict"] == 30
        assert ollama["stream"] is True
