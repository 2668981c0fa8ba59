"""
Adapters for chat and speech-to-text vendors.

Protocol defines WHAT, DescriptorAdapter implements HOW for any vendor that
can be described as data.
"""

from .base import HostAdapter
from .descriptor import DescriptorAdapter
from .schema import ChatTask, SpeechTask

__all__ = ["HostAdapter", "DescriptorAdapter", "ChatTask", "SpeechTask"]
