"""
OpenAI LLM Provider.
"""

from typing import Any, AsyncIterator

from ragchat.core.events import StreamEvent
from ragchat.core.message import Message
from ragchat.providers.base import LLMProvider


class OpenAIProvider(LLMProvider):
    """
    Chat provider for the OpenAI API.

    Works with any OpenAI-compatible endpoint through ``base_url``.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 2048,
        timeout: float | None = 60.0,
        max_retries: int = 2,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.organization = organization
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                organization=self.organization,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    def _params(self, messages: list[Message], **kwargs: Any) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_api_format() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        params.update(kwargs)
        return params

    async def invoke(self, messages: list[Message], **kwargs: Any) -> Message:
        """Get a completion from OpenAI."""
        client = self._get_client()

        response = await client.chat.completions.create(**self._params(messages, **kwargs))

        choice = response.choices[0]
        return Message.assistant(choice.message.content or "")

    async def stream(self, messages: list[Message], **kwargs: Any) -> AsyncIterator[StreamEvent]:
        """Stream a completion from OpenAI."""
        client = self._get_client()

        stream = await client.chat.completions.create(
            **self._params(messages, stream=True, **kwargs)
        )

        pieces: list[str] = []
        try:
            async for chunk in stream:
                delta = chunk.choices[0].delta if chunk.choices else None

                if delta is None:
                    continue

                if delta.content:
                    pieces.append(delta.content)
                    yield StreamEvent.content_delta(delta.content)
        finally:
            await stream.close()

        yield StreamEvent.message_end(Message.assistant("".join(pieces)))
