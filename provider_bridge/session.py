"""
Session - the selected chat and speech-to-text providers for one user,
backed by a KeyValueStore.

Both adapters handed out by a session share one CallSession, so starting a
transcription cancels a completion still streaming and vice versa.
"""

import logging
from typing import Optional

from provider_bridge.adapters.descriptor import DescriptorAdapter
from provider_bridge.config import (
    STORAGE_CUSTOM_AI_PROVIDERS,
    STORAGE_CUSTOM_STT_PROVIDERS,
    STORAGE_SELECTED_AI_PROVIDER,
    STORAGE_SELECTED_STT_PROVIDER,
    SelectedProviderState,
)
from provider_bridge.descriptors import ProviderDescriptor, ProviderKind
from provider_bridge.errors import ConfigurationError
from provider_bridge.registry import (
    KeyValueStore,
    MemoryStore,
    ProviderRegistry,
    load_selection,
    recover_selection,
    save_selection,
)
from provider_bridge.transport import CallSession, Transport

logger = logging.getLogger(__name__)

CUSTOM_KEYS: dict[ProviderKind, str] = {
    ProviderKind.CHAT: STORAGE_CUSTOM_AI_PROVIDERS,
    ProviderKind.STT: STORAGE_CUSTOM_STT_PROVIDERS,
}
SELECTION_KEYS: dict[ProviderKind, str] = {
    ProviderKind.CHAT: STORAGE_SELECTED_AI_PROVIDER,
    ProviderKind.STT: STORAGE_SELECTED_STT_PROVIDER,
}


class Session:
    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        store: Optional[KeyValueStore] = None,
        transport: Optional[Transport] = None,
    ):
        self.registry = registry or ProviderRegistry.builtin()
        self.store = store if store is not None else MemoryStore()
        self.calls = CallSession()
        self._transport = transport

        for kind, key in CUSTOM_KEYS.items():
            try:
                self.registry.load_custom(self.store.get(key), kind)
            except ConfigurationError as e:
                logger.warning(f"Ignoring stored custom {kind.value} providers: {e.message}")
                self.store.remove(key)

        self.chat_selection = load_selection(self.store, self.registry, STORAGE_SELECTED_AI_PROVIDER)
        self.stt_selection = load_selection(self.store, self.registry, STORAGE_SELECTED_STT_PROVIDER)

    # ─────────────────────────────────────────────────────────────────
    # SELECTION
    # ─────────────────────────────────────────────────────────────────

    def _select(self, kind: ProviderKind, provider_id: str, api_key: str, model: str) -> SelectedProviderState:
        self.registry.require(provider_id, kind)
        selection = SelectedProviderState(provider=provider_id, api_key=api_key, model=model)
        selection.model = self.registry.resolve_model(selection)
        save_selection(self.store, SELECTION_KEYS[kind], selection)
        return selection

    def select_chat(self, provider_id: str, api_key: str = "", model: str = "") -> SelectedProviderState:
        self.chat_selection = self._select(ProviderKind.CHAT, provider_id, api_key, model)
        return self.chat_selection

    def select_stt(self, provider_id: str, api_key: str = "", model: str = "") -> SelectedProviderState:
        self.stt_selection = self._select(ProviderKind.STT, provider_id, api_key, model)
        return self.stt_selection

    def select_fastest_stt(
        self, api_key: str = "", candidates: Optional[list[str]] = None
    ) -> SelectedProviderState:
        """Select the best-ranked STT provider, optionally among `candidates`."""
        descriptor = self.registry.fastest_stt_provider(candidates)
        if descriptor is None:
            raise ConfigurationError("No speech-to-text provider available")
        return self.select_stt(descriptor.id, api_key)

    def add_custom_provider(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        """Register a user-defined descriptor and persist it."""
        descriptor = descriptor.model_copy(update={"is_custom": True})
        self.registry.add(descriptor)
        self.store.set(CUSTOM_KEYS[descriptor.kind], self.registry.custom_json(descriptor.kind))
        return descriptor

    def remove_custom_provider(self, provider_id: str) -> bool:
        descriptor = self.registry.get(provider_id)
        if descriptor is None or not self.registry.remove_custom(provider_id):
            return False
        self.store.set(CUSTOM_KEYS[descriptor.kind], self.registry.custom_json(descriptor.kind))
        for kind, selection in ((ProviderKind.CHAT, self.chat_selection), (ProviderKind.STT, self.stt_selection)):
            if selection.provider == provider_id:
                self.store.remove(SELECTION_KEYS[kind])
        self.chat_selection = load_selection(self.store, self.registry, STORAGE_SELECTED_AI_PROVIDER)
        self.stt_selection = load_selection(self.store, self.registry, STORAGE_SELECTED_STT_PROVIDER)
        return True

    def recover(self) -> SelectedProviderState:
        """Reset chat settings to the default provider, dropping custom chat providers."""
        self.calls.cancel()
        for descriptor in self.registry.custom_providers(ProviderKind.CHAT):
            self.registry.remove_custom(descriptor.id)
        self.chat_selection = recover_selection(self.store)
        return self.chat_selection

    # ─────────────────────────────────────────────────────────────────
    # ADAPTERS
    # ─────────────────────────────────────────────────────────────────

    def _adapter(self, kind: ProviderKind, selection: SelectedProviderState) -> DescriptorAdapter:
        if not selection.provider:
            raise ConfigurationError(f"No {kind.value} provider selected")
        descriptor = self.registry.require(selection.provider, kind)
        return DescriptorAdapter(
            descriptor,
            api_key=selection.api_key,
            model=self.registry.resolve_model(selection),
            transport=self._transport,
            calls=self.calls,
        )

    def chat_adapter(self) -> DescriptorAdapter:
        return self._adapter(ProviderKind.CHAT, self.chat_selection)

    def stt_adapter(self) -> DescriptorAdapter:
        return self._adapter(ProviderKind.STT, self.stt_selection)

    def cancel(self) -> None:
        self.calls.cancel()

    async def warm(self) -> bool:
        """
        Pre-open a connection to the selected chat provider so the first
        request skips connection setup. Never raises.
        """
        descriptor = self.registry.get(self.chat_selection.provider)
        if descriptor is None:
            return False
        pool = (self._transport or Transport()).pool
        warmed = await pool.warm(descriptor.base_url)
        logger.debug(f"Warm-up for {descriptor.id}: {'ok' if warmed else 'unreachable'}")
        return warmed
