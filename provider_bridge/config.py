"""
Configuration constants and Pydantic models for provider-bridge.
"""

import os
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

DEFAULT_TIMEOUT_SECONDS: float = 60.0
DEFAULT_STT_TIMEOUT_SECONDS: float = 120.0
DEFAULT_MODELS_TIMEOUT_SECONDS: float = 15.0
DEFAULT_SYSTEM_PROMPT: str = "You are a helpful AI assistant."

DEFAULT_CHAT_PROVIDER: str = "gemini"
DEFAULT_CHAT_MODEL: str = "gemini-1.5-flash"


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS
# ─────────────────────────────────────────────────────────────────────

ERROR_EXCERPT_CHARS: int = 500
POOL_IDLE_SECONDS: float = 30.0
CACHE_TTL_SECONDS: float = 300.0
CACHE_MAX_ENTRIES: int = 100

# Persistence keys understood by the key-value store collaborator
STORAGE_SELECTED_AI_PROVIDER: str = "selected_ai_provider"
STORAGE_SELECTED_STT_PROVIDER: str = "selected_stt_provider"
STORAGE_CUSTOM_AI_PROVIDERS: str = "custom_ai_providers"
STORAGE_CUSTOM_STT_PROVIDERS: str = "custom_stt_providers"


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def get_timeout_seconds() -> float:
    """
    Hard deadline for one chat call.

    Set PROVIDER_BRIDGE_TIMEOUT_SECONDS in .env (default: 60).
    """
    return _env_float("PROVIDER_BRIDGE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)


def get_stt_timeout_seconds() -> float:
    """
    Hard deadline for one transcription, polling included.

    Set PROVIDER_BRIDGE_STT_TIMEOUT_SECONDS in .env (default: 120).
    """
    return _env_float("PROVIDER_BRIDGE_STT_TIMEOUT_SECONDS", DEFAULT_STT_TIMEOUT_SECONDS)


def get_pool_idle_seconds() -> float:
    """Idle time after which an unused pooled client is closed."""
    return _env_float("PROVIDER_BRIDGE_POOL_IDLE_SECONDS", POOL_IDLE_SECONDS)


def get_cache_ttl_seconds() -> float:
    return _env_float("PROVIDER_BRIDGE_CACHE_TTL_SECONDS", CACHE_TTL_SECONDS)


def get_cache_max_entries() -> int:
    return _env_int("PROVIDER_BRIDGE_CACHE_MAX_ENTRIES", CACHE_MAX_ENTRIES)


def is_cache_enabled() -> bool:
    """
    Response cache is opt-in.

    Set PROVIDER_BRIDGE_CACHE_ENABLED=1 to serve repeat prompts from memory.
    """
    return os.environ.get("PROVIDER_BRIDGE_CACHE_ENABLED", "").strip().lower() in (
        "1", "true", "yes", "on"
    )


def get_retry_min_wait() -> int:
    """
    Minimum wait between caller-side retries in seconds.

    Set PROVIDER_BRIDGE_RETRY_MIN_WAIT in .env (default: 1).
    """
    return _env_int("PROVIDER_BRIDGE_RETRY_MIN_WAIT", 1)


def get_retry_max_wait() -> int:
    """
    Maximum wait between caller-side retries in seconds.

    Set PROVIDER_BRIDGE_RETRY_MAX_WAIT in .env (default: 10).
    """
    return _env_int("PROVIDER_BRIDGE_RETRY_MAX_WAIT", 10)


def get_api_key_from_env(provider_id: str) -> Optional[str]:
    """
    Look up an API key for a provider.

    Checks <PROVIDER_ID>_API_KEY first (dashes become underscores),
    then PROVIDER_BRIDGE_API_KEY.
    """
    specific = provider_id.upper().replace("-", "_") + "_API_KEY"
    return os.environ.get(specific) or os.environ.get("PROVIDER_BRIDGE_API_KEY")


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class SelectedProviderState(BaseModel):
    """The provider, key and model the user picked for one kind of call."""
    model_config = ConfigDict(protected_namespaces=())

    provider: str = ""
    # Older persisted selections used camelCase keys
    api_key: str = Field(default="", validation_alias=AliasChoices("api_key", "apiKey"))
    model: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.provider and self.api_key.strip())


class Message(BaseModel):
    """A single turn of conversation history."""
    role: str  # "user", "assistant", or "system"
    content: str


def default_chat_selection() -> SelectedProviderState:
    return SelectedProviderState(
        provider=DEFAULT_CHAT_PROVIDER,
        api_key="",
        model=DEFAULT_CHAT_MODEL,
    )
