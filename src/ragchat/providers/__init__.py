"""
LLM Providers - chat capabilities used by the conversation graphs.
"""

from ragchat.providers.base import LLMProvider
from ragchat.providers.openai import OpenAIProvider

__all__ = ["LLMProvider", "OpenAIProvider"]
