"""Tests for Session - persisted selections, custom providers, shared call session."""

import json

import httpx
import pytest
import respx

from provider_bridge.adapters import ChatTask
from provider_bridge.config import (
    STORAGE_CUSTOM_AI_PROVIDERS,
    STORAGE_SELECTED_AI_PROVIDER,
    STORAGE_SELECTED_STT_PROVIDER,
)
from provider_bridge.descriptors import ProviderKind
from provider_bridge.errors import ConfigurationError
from provider_bridge.pool import ClientPool
from provider_bridge.registry import MemoryStore
from provider_bridge.session import Session
from provider_bridge.transport import Transport

from tests.conftest import MOCK_API_KEY, MOCK_BASE_URL, MOCK_SSE_BODY, make_descriptor


@pytest.fixture
def store():
    return MemoryStore()


class TestSelection:
    def test_fresh_session_defaults_to_gemini(self, store):
        session = Session(store=store)
        assert session.chat_selection.provider == "gemini"
        assert session.chat_selection.model == "gemini-1.5-flash"
        assert session.stt_selection.provider == ""

    def test_select_chat_persists(self, store):
        session = Session(store=store)
        selection = session.select_chat("openai", api_key="sk-1")

        assert selection.model == "gpt-4o-mini"
        stored = json.loads(store.get(STORAGE_SELECTED_AI_PROVIDER))
        assert stored == {"provider": "openai", "api_key": "sk-1", "model": "gpt-4o-mini"}
        assert Session(store=store).chat_selection == selection

    def test_select_stt_persists(self, store):
        session = Session(store=store)
        session.select_stt("deepgram-stt", api_key="dg", model="nova-3")
        assert json.loads(store.get(STORAGE_SELECTED_STT_PROVIDER))["model"] == "nova-3"

    def test_select_wrong_kind(self, store):
        session = Session(store=store)
        with pytest.raises(ConfigurationError, match="not chat"):
            session.select_chat("openai-whisper")
        assert store.get(STORAGE_SELECTED_AI_PROVIDER) is None

    def test_unknown_stored_provider_falls_back(self):
        store = MemoryStore({STORAGE_SELECTED_AI_PROVIDER: json.dumps({"provider": "gone"})})
        session = Session(store=store)
        assert session.chat_selection.provider == "gemini"
        assert store.get(STORAGE_SELECTED_AI_PROVIDER) is None


class TestCustomProviders:
    def test_add_persists_and_reloads(self, store):
        session = Session(store=store)
        added = session.add_custom_provider(make_descriptor(id="my-llm", name="My LLM"))

        assert added.is_custom
        stored = json.loads(store.get(STORAGE_CUSTOM_AI_PROVIDERS))
        assert [entry["id"] for entry in stored] == ["my-llm"]

        reloaded = Session(store=store)
        assert reloaded.registry.require("my-llm").is_custom

    def test_remove_resets_selection(self, store):
        session = Session(store=store)
        session.add_custom_provider(make_descriptor(id="my-llm"))
        session.select_chat("my-llm", api_key=MOCK_API_KEY)

        assert session.remove_custom_provider("my-llm") is True
        assert "my-llm" not in session.registry
        assert json.loads(store.get(STORAGE_CUSTOM_AI_PROVIDERS)) == []
        assert session.chat_selection.provider == "gemini"

    def test_remove_missing(self, store):
        assert Session(store=store).remove_custom_provider("nope") is False

    def test_builtin_cannot_be_removed(self, store):
        with pytest.raises(ConfigurationError):
            Session(store=store).remove_custom_provider("openai")

    def test_corrupted_custom_list_is_dropped(self):
        store = MemoryStore({STORAGE_CUSTOM_AI_PROVIDERS: "{not json"})
        session = Session(store=store)
        assert session.registry.custom_providers(ProviderKind.CHAT) == []
        assert store.get(STORAGE_CUSTOM_AI_PROVIDERS) is None

    def test_recover(self, store):
        session = Session(store=store)
        session.add_custom_provider(make_descriptor(id="my-llm"))
        session.select_chat("my-llm", api_key=MOCK_API_KEY)

        selection = session.recover()

        assert selection.provider == "gemini"
        assert "my-llm" not in session.registry
        assert store.get(STORAGE_CUSTOM_AI_PROVIDERS) is None
        assert json.loads(store.get(STORAGE_SELECTED_AI_PROVIDER))["provider"] == "gemini"


class TestAdapters:
    def test_adapters_share_call_session(self, store):
        session = Session(store=store)
        session.select_stt("openai-whisper", api_key="sk")
        assert session.chat_adapter().calls is session.stt_adapter().calls is session.calls

    def test_stt_adapter_requires_selection(self, store):
        with pytest.raises(ConfigurationError, match="No stt provider selected"):
            Session(store=store).stt_adapter()

    def test_adapter_uses_selected_model(self, store):
        session = Session(store=store)
        session.select_chat("openai", api_key="sk", model="gpt-4o")
        adapter = session.chat_adapter()
        assert adapter.descriptor.id == "openai"
        assert adapter.model == "gpt-4o"

    @pytest.mark.asyncio
    @respx.mock
    async def test_custom_provider_end_to_end(self, store):
        session = Session(store=store)
        session.add_custom_provider(make_descriptor(id="my-llm"))
        session.select_chat("my-llm", api_key=MOCK_API_KEY)
        respx.post(f"{MOCK_BASE_URL}/v1/chat/completions").mock(
            return_value=httpx.Response(200, content=MOCK_SSE_BODY)
        )

        result = await session.chat_adapter().complete(ChatTask(user_text="Hi"))

        assert result == "The capital is Paris."


class TestUnresolvableSelection:
    def test_custom_provider_without_any_model_falls_back(self):
        custom = json.dumps([{
            "id": "my-llm", "name": "Mine", "base_url": MOCK_BASE_URL,
            "endpoint": "/v1/chat/completions",
        }])
        store = MemoryStore({
            STORAGE_CUSTOM_AI_PROVIDERS: custom,
            STORAGE_SELECTED_AI_PROVIDER: json.dumps({"provider": "my-llm", "api_key": "k"}),
        })

        session = Session(store=store)

        assert session.chat_selection.provider == "gemini"
        assert "my-llm" in session.registry
        assert store.get(STORAGE_SELECTED_AI_PROVIDER) is None


class TestWarm:
    @pytest.mark.asyncio
    async def test_warms_selected_provider_origin(self, store):
        seen = []

        def handler(request):
            seen.append((request.method, str(request.url)))
            return httpx.Response(200)

        transport = Transport(ClientPool(transport=httpx.MockTransport(handler)))
        session = Session(store=store, transport=transport)
        session.select_chat("openai", api_key="sk")

        assert await session.warm() is True
        assert seen == [("HEAD", "https://api.openai.com/health")]
        assert transport.pool.get("https://api.openai.com:443") is not None
        await transport.pool.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_not_an_error(self, store):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        transport = Transport(ClientPool(transport=httpx.MockTransport(handler)))
        session = Session(store=store, transport=transport)

        assert await session.warm() is False
        await transport.pool.aclose()


class TestFastestSTTSelection:
    def test_selects_best_ranked(self, store):
        session = Session(store=store)
        selection = session.select_fastest_stt(api_key="gsk")
        assert selection.provider == "groq-whisper"
        assert selection.model == "whisper-large-v3-turbo"
        assert json.loads(store.get(STORAGE_SELECTED_STT_PROVIDER))["provider"] == "groq-whisper"

    def test_among_configured_candidates(self, store):
        session = Session(store=store)
        assert session.select_fastest_stt(candidates=["deepgram-stt", "assemblyai-stt"]).provider == "assemblyai-stt"

    def test_no_candidates(self, store):
        with pytest.raises(ConfigurationError):
            Session(store=store).select_fastest_stt(candidates=["openai"])
