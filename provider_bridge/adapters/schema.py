import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from provider_bridge.config import Message


class ChatTask(BaseModel):
    """
    Standardized chat request handed to an adapter.

    Vendor layout (roles, system prompt placement, image parts) is applied
    later by the request builder, so callers always speak in this shape.
    """
    model_config = ConfigDict(protected_namespaces=())

    user_text: str
    history: list[Message] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    image: Optional[str] = None  # data URL or bare base64
    model: Optional[str] = None  # overrides the adapter's model
    timeout_seconds: Optional[float] = None
    voice: bool = False  # apply the provider's voice_fields for short spoken replies

    def cache_prompt(self) -> str:
        """Everything that shapes the answer apart from provider and model."""
        return json.dumps({
            "system": self.system_prompt,
            "history": [m.model_dump() for m in self.history],
            "user": self.user_text,
            "voice": self.voice,
        }, sort_keys=True)


class SpeechTask(BaseModel):
    """Standardized transcription request."""
    model_config = ConfigDict(protected_namespaces=())

    audio: bytes
    model: Optional[str] = None
    timeout_seconds: Optional[float] = None
