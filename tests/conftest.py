"""Shared test fixtures for provider-bridge tests."""

import pytest

from provider_bridge import state
from provider_bridge.descriptors import ProviderDescriptor


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_API_KEY = "test-key-123"
MOCK_BASE_URL = "https://api.example.test"
MOCK_MODEL = "mock-model-1"

MOCK_SSE_BODY = (
    'data: {"choices":[{"delta":{"role":"assistant","content":""}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"The"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":" capital"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":" is Paris."}}]}\n\n'
    'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
    "data: [DONE]\n\n"
)

MOCK_MODELS_RESPONSE = {
    "data": [
        {"id": "mock-model-1", "object": "model"},
        {"id": "mock-model-2", "object": "model"},
    ]
}


def sse(*payloads: str) -> bytes:
    """Build an SSE body from raw data payloads."""
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


def make_descriptor(**overrides) -> ProviderDescriptor:
    data = {
        "id": "mock-chat",
        "name": "Mock Chat",
        "base_url": MOCK_BASE_URL,
        "endpoint": "/v1/chat/completions",
        "auth": {"header": "Authorization", "scheme": "Bearer"},
        "request": {"fields": {"stream": True}},
        "response": {
            "stream": "sse",
            "delta_path": "choices[0].delta.content",
            "content_path": "choices[0].message.content",
        },
        "default_model": MOCK_MODEL,
        "models": [MOCK_MODEL],
        "models_endpoint": {"endpoint": "/v1/models"},
    }
    data.update(overrides)
    return ProviderDescriptor.model_validate(data)


def make_stt_descriptor(**overrides) -> ProviderDescriptor:
    data = {
        "id": "mock-stt",
        "name": "Mock STT",
        "kind": "stt",
        "base_url": MOCK_BASE_URL,
        "endpoint": "/v1/audio/transcriptions",
        "auth": {"header": "Authorization", "scheme": "Bearer"},
        "request": {"body": "multipart", "audio_field": "file"},
        "response": {"content_path": "text"},
        "default_model": "whisper-1",
        "input": {"audio": True},
    }
    data.update(overrides)
    return ProviderDescriptor.model_validate(data)


def make_job_descriptor(**overrides) -> ProviderDescriptor:
    data = {
        "id": "mock-job",
        "name": "Mock Job STT",
        "kind": "stt",
        "base_url": MOCK_BASE_URL,
        "endpoint": "/v2/transcript",
        "auth": {"header": "Authorization"},
        "request": {"body": "multipart", "audio_field": "file", "model_path": None},
        "job": {
            "id_path": "id",
            "poll": {
                "endpoint": "/v2/transcript/{job_id}",
                "interval_seconds": 0,
                "transcript_path": "text",
            },
        },
        "input": {"audio": True},
    }
    data.update(overrides)
    return ProviderDescriptor.model_validate(data)


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    """Fresh process-wide pool and cache for every test, cache disabled."""
    monkeypatch.delenv("PROVIDER_BRIDGE_CACHE_ENABLED", raising=False)
    state.reset()
    yield
    state.reset()


@pytest.fixture
def chat_descriptor():
    return make_descriptor()


@pytest.fixture
def stt_descriptor():
    return make_stt_descriptor()


@pytest.fixture
def job_descriptor():
    return make_job_descriptor()
