"""
Provider registry - built-in and custom descriptors, plus persisted
provider selections.

Built-in descriptors ship as YAML package data. Custom descriptors are
user-defined and persisted as a JSON array through a KeyValueStore, the
same store that holds the selected provider for chat and transcription.

Usage:
    registry = ProviderRegistry.builtin()
    registry.load_custom(store.get(STORAGE_CUSTOM_AI_PROVIDERS), ProviderKind.CHAT)
    selection = load_selection(store, registry, STORAGE_SELECTED_AI_PROVIDER)
"""

import json
import logging
from importlib import resources
from typing import Iterable, Iterator, Optional, Protocol, Union

import yaml
from pydantic import ValidationError

from provider_bridge.config import (
    STORAGE_CUSTOM_AI_PROVIDERS,
    STORAGE_SELECTED_AI_PROVIDER,
    SelectedProviderState,
    default_chat_selection,
)
from provider_bridge.descriptors import ProviderDescriptor, ProviderKind
from provider_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

BUILTIN_FILES: dict[ProviderKind, str] = {
    ProviderKind.CHAT: "chat_providers.yaml",
    ProviderKind.STT: "stt_providers.yaml",
}


# ─────────────────────────────────────────────────────────────────────
# DESCRIPTOR LOADING
# ─────────────────────────────────────────────────────────────────────

def _validate(entry: object, kind: ProviderKind, is_custom: bool) -> ProviderDescriptor:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Provider entry must be a mapping, got {type(entry).__name__}")
    data = dict(entry)
    data.setdefault("kind", kind.value)
    data["is_custom"] = is_custom
    try:
        return ProviderDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid provider descriptor: {e}", provider_id=data.get("id")
        ) from e


def load_builtin_descriptors(kind: ProviderKind) -> list[ProviderDescriptor]:
    """Descriptors shipped with the package for one provider kind."""
    source = resources.files("provider_bridge") / "data" / BUILTIN_FILES[kind]
    entries = yaml.safe_load(source.read_text(encoding="utf-8")) or []
    return [_validate(entry, kind, is_custom=False) for entry in entries]


def parse_custom_providers(
    raw: Union[str, list, None], kind: ProviderKind
) -> list[ProviderDescriptor]:
    """
    Parse persisted custom descriptors (a JSON array, or an already decoded list).

    Raises:
        ConfigurationError: If the payload is not a list of valid descriptors
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ConfigurationError(f"Custom providers are not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise ConfigurationError("Custom providers must be a JSON array")
    return [_validate(entry, kind, is_custom=True) for entry in raw]


class ProviderRegistry:
    """Descriptors by id. Ids are unique across built-in and custom entries."""

    def __init__(self, descriptors: Iterable[ProviderDescriptor] = ()):
        self._providers: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            self.add(descriptor)

    @classmethod
    def builtin(cls) -> "ProviderRegistry":
        descriptors: list[ProviderDescriptor] = []
        for kind in BUILTIN_FILES:
            descriptors.extend(load_builtin_descriptors(kind))
        return cls(descriptors)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def add(self, descriptor: ProviderDescriptor) -> None:
        if descriptor.id in self._providers:
            raise ConfigurationError(f"Duplicate provider id: {descriptor.id}", provider_id=descriptor.id)
        self._providers[descriptor.id] = descriptor

    def get(self, provider_id: str) -> Optional[ProviderDescriptor]:
        return self._providers.get(provider_id)

    def require(self, provider_id: str, kind: Optional[ProviderKind] = None) -> ProviderDescriptor:
        descriptor = self._providers.get(provider_id)
        if descriptor is None:
            raise ConfigurationError(f"Unknown provider: {provider_id}", provider_id=provider_id)
        if kind is not None and descriptor.kind != kind:
            raise ConfigurationError(
                f"{descriptor.name} is a {descriptor.kind.value} provider, not {kind.value}",
                provider_id=provider_id,
            )
        return descriptor

    def remove_custom(self, provider_id: str) -> bool:
        """Remove a custom descriptor. Built-in descriptors cannot be removed."""
        descriptor = self._providers.get(provider_id)
        if descriptor is None:
            return False
        if not descriptor.is_custom:
            raise ConfigurationError(
                f"Built-in provider {provider_id} cannot be removed", provider_id=provider_id
            )
        del self._providers[provider_id]
        return True

    def load_custom(self, raw: Union[str, list, None], kind: ProviderKind) -> list[ProviderDescriptor]:
        """Parse and add persisted custom descriptors. Returns what was added."""
        descriptors = parse_custom_providers(raw, kind)
        for descriptor in descriptors:
            self.add(descriptor)
        return descriptors

    def by_kind(self, kind: ProviderKind) -> list[ProviderDescriptor]:
        return [d for d in self._providers.values() if d.kind == kind]

    def chat_providers(self) -> list[ProviderDescriptor]:
        return self.by_kind(ProviderKind.CHAT)

    def stt_providers(self) -> list[ProviderDescriptor]:
        return self.by_kind(ProviderKind.STT)

    def fastest_stt_provider(self, ids: Optional[Iterable[str]] = None) -> Optional[ProviderDescriptor]:
        """
        The STT provider with the lowest speed_rank, optionally among `ids`.

        Falls back to the first candidate when none is ranked.
        """
        if ids is None:
            candidates = self.stt_providers()
        else:
            candidates = [
                d for d in (self._providers.get(i) for i in ids)
                if d is not None and d.kind == ProviderKind.STT
            ]
        ranked = [d for d in candidates if d.speed_rank is not None]
        if ranked:
            return min(ranked, key=lambda d: d.speed_rank)
        return candidates[0] if candidates else None

    def custom_providers(self, kind: ProviderKind) -> list[ProviderDescriptor]:
        return [d for d in self.by_kind(kind) if d.is_custom]

    def custom_json(self, kind: ProviderKind) -> str:
        """Custom descriptors of one kind, serialized for persistence."""
        return json.dumps([
            d.model_dump(mode="json", exclude={"is_custom"}) for d in self.custom_providers(kind)
        ])

    def resolve_model(self, selection: SelectedProviderState) -> str:
        """The selection's model, else the provider's default, else its first listed model."""
        if selection.model:
            return selection.model
        descriptor = self.require(selection.provider)
        if descriptor.default_model:
            return descriptor.default_model
        if descriptor.models:
            return descriptor.models[0]
        raise ConfigurationError(
            f"No model selected and {descriptor.name} declares no default", provider_id=descriptor.id
        )


# ─────────────────────────────────────────────────────────────────────
# PERSISTED SELECTION
# ─────────────────────────────────────────────────────────────────────

class KeyValueStore(Protocol):
    """String key-value persistence supplied by the host application."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process KeyValueStore."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


def _default_for(key: str) -> SelectedProviderState:
    if key == STORAGE_SELECTED_AI_PROVIDER:
        return default_chat_selection()
    return SelectedProviderState()


def save_selection(store: KeyValueStore, key: str, selection: SelectedProviderState) -> None:
    store.set(key, selection.model_dump_json())


def load_selection(
    store: KeyValueStore,
    registry: ProviderRegistry,
    key: str = STORAGE_SELECTED_AI_PROVIDER,
) -> SelectedProviderState:
    """
    Read a persisted selection.

    Accepts the current object form and the legacy bare provider id. A
    selection without a model gets the provider's default model. Anything
    unreadable, or naming a provider the registry does not know, is removed
    from the store and the default selection is returned instead.
    """
    default = _default_for(key)
    raw = store.get(key)
    if raw is None or not raw.strip():
        return default

    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = raw.strip()  # legacy: a bare provider id

    selection: Optional[SelectedProviderState] = None
    if isinstance(parsed, str):
        selection = SelectedProviderState(provider=parsed)
    elif isinstance(parsed, dict):
        try:
            selection = SelectedProviderState.model_validate(parsed)
        except ValidationError:
            selection = None

    if selection is None or not selection.provider or selection.provider not in registry:
        logger.warning(f"Discarding unusable provider selection under '{key}', using default")
        store.remove(key)
        return default

    if not selection.model:
        try:
            selection.model = registry.resolve_model(selection)
        except ConfigurationError as e:
            logger.warning(f"Discarding selection under '{key}': {e.message}")
            store.remove(key)
            return default
        logger.info(f"Selection for {selection.provider} had no model, using {selection.model}")
        save_selection(store, key, selection)
    return selection


def recover_selection(store: KeyValueStore) -> SelectedProviderState:
    """
    Explicit reset for chat settings.

    Clears the stored chat selection and custom chat providers, then writes
    the default (Gemini) selection back.
    """
    store.remove(STORAGE_SELECTED_AI_PROVIDER)
    store.remove(STORAGE_CUSTOM_AI_PROVIDERS)
    default = default_chat_selection()
    save_selection(store, STORAGE_SELECTED_AI_PROVIDER, default)
    logger.info(f"Provider settings reset to {default.provider}")
    return default
