"""
provider-bridge - declarative multi-vendor chat and speech-to-text client.

Vendors are described as data (ProviderDescriptor); one adapter builds the
request, streams or polls the reply and returns failures as values.
"""

__version__ = "0.1.0"

from provider_bridge.adapters import ChatTask, DescriptorAdapter, HostAdapter, SpeechTask
from provider_bridge.descriptors import ProviderDescriptor, ProviderKind
from provider_bridge.errors import ProviderError, is_error
from provider_bridge.listing import list_models
from provider_bridge.registry import ProviderRegistry
from provider_bridge.session import Session

__all__ = [
    "ChatTask",
    "DescriptorAdapter",
    "HostAdapter",
    "ProviderDescriptor",
    "ProviderError",
    "ProviderKind",
    "ProviderRegistry",
    "Session",
    "SpeechTask",
    "is_error",
    "list_models",
]
