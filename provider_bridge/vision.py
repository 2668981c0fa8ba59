"""
Vision capability helpers - which provider/model pairs accept an image.
"""

from typing import Optional

from provider_bridge.descriptors import ProviderDescriptor

# Preferred vision models per built-in provider, best first
VISION_MODEL_PRIORITY: dict[str, list[str]] = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo"],
    "claude": [
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    ],
    "mistral": ["pixtral-large-latest", "pixtral-12b-2409"],
    "grok": ["grok-vision-beta"],
    "groq": ["llama-3.2-90b-vision-preview", "llama-3.2-11b-vision-preview"],
    "gemini": ["gemini-1.5-flash", "gemini-1.5-pro"],
}


def supports_vision(provider: ProviderDescriptor, model: Optional[str] = None) -> bool:
    """
    Check if a provider and model combination accepts image input.

    A provider without a vision_models list is assumed to accept images on
    every model, provided it declares image input at all.
    """
    if not provider.input.image:
        return False
    if not provider.vision_models:
        return True
    current = model or provider.default_model
    return bool(current) and current in provider.vision_models


def get_vision_models(provider: ProviderDescriptor) -> list[str]:
    if not provider.input.image:
        return []
    return list(provider.vision_models)


def vision_recommendation(provider: ProviderDescriptor) -> str:
    """User-facing hint for when an image was sent to the wrong model."""
    if not provider.input.image:
        return f"{provider.name} does not support image input."
    models = get_vision_models(provider)
    if not models:
        return f"{provider.name} supports image input with all models."
    return f"For {provider.name}, use one of these vision models: {', '.join(models)}"


def suggest_vision_model(provider: ProviderDescriptor) -> Optional[str]:
    """Best vision model for a provider, or None when it takes no images."""
    if not provider.input.image:
        return None
    models = get_vision_models(provider)
    if not models:
        return provider.default_model or None
    for preferred in VISION_MODEL_PRIORITY.get(provider.id, []):
        if preferred in models:
            return preferred
    return models[0]
