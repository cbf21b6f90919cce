"""
Base LLM Provider interface.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from ragchat.core.events import StreamEvent
from ragchat.core.message import Message


class LLMProvider(ABC):
    """
    Abstract base class for chat providers.

    ``invoke`` returns the complete assistant reply; ``stream`` yields
    ``content_delta`` events followed by one ``message_end`` event. Closing
    the stream early must release the underlying connection.
    """

    @abstractmethod
    async def invoke(self, messages: list[Message], **kwargs: Any) -> Message:
        """
        Get a completion from the LLM.

        Args:
            messages: Ordered conversation messages
            **kwargs: Additional provider-specific options

        Returns:
            The assistant message
        """
        pass

    @abstractmethod
    def stream(self, messages: list[Message], **kwargs: Any) -> AsyncIterator[StreamEvent]:
        """
        Stream a completion from the LLM.

        Args:
            messages: Ordered conversation messages
            **kwargs: Additional provider-specific options

        Yields:
            Stream events for the reply
        """
        pass
