"""
HostAdapter Protocol - the contract every provider adapter fulfils.

This is the WHAT (interface), not the HOW (implementation).
See descriptor.py for the data-driven implementation.
"""

from typing import AsyncGenerator, Protocol, Union

from provider_bridge.adapters.schema import ChatTask, SpeechTask
from provider_bridge.errors import ProviderError


class HostAdapter(Protocol):
    """
    Contract for chat and transcription backends.

    Failures are returned, not raised: every method hands back a
    ProviderError value instead of throwing into the caller.
    """

    async def get_available_models(self) -> Union[list[str], ProviderError]:
        """
        Return model ids offered by the provider.

        Returns:
            List of model identifiers, [] when there are none, or the failure
        """
        ...

    def stream_completion(self, task: ChatTask) -> AsyncGenerator[Union[str, ProviderError], None]:
        """
        Stream completion text for one chat turn.

        Yields:
            Text deltas in arrival order. On failure the last item is a
            ProviderError. A cancelled call simply stops yielding.
        """
        ...

    async def complete(self, task: ChatTask) -> Union[str, ProviderError]:
        """Whole completion text, or the failure."""
        ...

    async def transcribe(self, task: SpeechTask) -> Union[str, ProviderError]:
        """Transcript for one audio clip, or the failure."""
        ...
