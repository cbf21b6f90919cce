"""
Test configuration and fixtures.
"""

from typing import Any, AsyncIterator, Callable, Optional, Union

import pytest

from ragchat.core.events import StreamEvent
from ragchat.core.message import Message
from ragchat.providers.base import LLMProvider
from ragchat.rag.base import BaseRetriever
from ragchat.rag.document import Chunk
from ragchat.rag.embeddings import FakeEmbedding


Reply = Union[str, Callable[[list[Message]], str]]


class FakeChatProvider(LLMProvider):
    """Scripted chat provider that records every prompt it receives."""

    def __init__(self, reply: Reply = "ok", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: list[list[Message]] = []
        self.stream_closed = False

    def _reply_text(self, messages: list[Message]) -> str:
        return self.reply(messages) if callable(self.reply) else self.reply

    async def invoke(self, messages: list[Message], **kwargs: Any) -> Message:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return Message.assistant(self._reply_text(messages))

    async def stream(self, messages: list[Message], **kwargs: Any) -> AsyncIterator[StreamEvent]:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error

        text = self._reply_text(messages)
        words = text.split(" ")
        try:
            for i, word in enumerate(words):
                yield StreamEvent.content_delta(word if i == len(words) - 1 else word + " ")
        finally:
            self.stream_closed = True
        yield StreamEvent.message_end(Message.assistant(text))

    @property
    def last_prompt(self) -> list[Message]:
        return self.calls[-1]


class RecordingEmbedding(FakeEmbedding):
    """Fake embedding that remembers which texts it was asked to embed.

    Texts containing ``dead_marker`` get an empty vector back.
    """

    def __init__(self, dead_marker: Optional[str] = None, fail_on: Optional[str] = None):
        super().__init__(dimension=64)
        self.dead_marker = dead_marker
        self.fail_on = fail_on
        self.embedded: list[str] = []
        self.document_calls = 0

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls += 1
        if self.fail_on is not None and any(self.fail_on in text for text in texts):
            raise RuntimeError("embedding service unavailable")

        self.embedded.extend(texts)
        return [
            [] if self.dead_marker and self.dead_marker in text else self._embed(text)
            for text in texts
        ]


class StaticRetriever(BaseRetriever):
    """Retriever returning fixed chunks, or raising a fixed error."""

    def __init__(self, chunks: Optional[list[Chunk]] = None, error: Optional[Exception] = None):
        self.chunks = chunks or []
        self.error = error
        self.queries: list[str] = []

    async def retrieve(self, query, k=None, filter=None) -> list[Chunk]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.chunks)


@pytest.fixture
def chat_provider():
    """Chat provider echoing a fixed answer."""
    return FakeChatProvider("ok")


@pytest.fixture
def knowledge_dir(tmp_path):
    """Knowledge directory with files of 100, 5000 and 50 characters."""
    root = tmp_path / "knowledge"
    root.mkdir()
    (root / "a_small.txt").write_text("x" * 100, encoding="utf-8")
    (root / "b_large.txt").write_text("word " * 1000, encoding="utf-8")
    (root / "c_tiny.md").write_text("y" * 50, encoding="utf-8")
    return root


@pytest.fixture
def python_knowledge_dir(tmp_path):
    """Small knowledge base with distinct topics."""
    root = tmp_path / "docs"
    root.mkdir()
    (root / "python.md").write_text(
        "Python is a programming language created by Guido van Rossum.",
        encoding="utf-8",
    )
    (root / "cooking.txt").write_text(
        "Pasta should be boiled in salted water for ten minutes.",
        encoding="utf-8",
    )
    return root
