"""
Graph nodes: plain chat, retrieval-augmented chat and translation.

Nodes are added to a ``StateGraph`` through their ``run`` method. With
``stream_tokens`` set in the run config they stream the provider's reply and
publish every fragment on the custom stream as
``{"node": ..., "event": "token", "data": ...}``.
"""

from abc import abstractmethod
from typing import Any, Optional

from langchain_core.messages import BaseMessage
from langchain_core.runnables import Runnable, RunnableConfig
from langgraph.config import get_stream_writer

from ragchat.core.exceptions import GenerationError, RagChatError, RetrievalError
from ragchat.core.message import Message, Role, from_langchain, to_langchain
from ragchat.graph.prompts import (
    CHAT_SYSTEM_PROMPT,
    GENERATION_ERROR_REPLY,
    NO_CONTEXT,
    NO_INFORMATION_REPLY,
    RAG_SYSTEM_PROMPT,
    RETRIEVAL_ERROR_REPLY,
    TRANSLATE_SYSTEM_PROMPT,
    format_documents,
)
from ragchat.graph.state import ConversationState, configurable
from ragchat.graph.trimming import create_trimmer
from ragchat.providers.base import LLMProvider
from ragchat.rag.base import BaseRetriever
from ragchat.rag.document import Chunk
from ragchat.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "Chinese"


def resolve_language(
    state: ConversationState,
    config: Optional[RunnableConfig],
    default: str = DEFAULT_LANGUAGE,
) -> str:
    """Target language: the run's, else the thread's, else ``default``."""
    return configurable(config).get("language") or state.get("language") or default


def _as_generation_error(error: Exception) -> GenerationError:
    if isinstance(error, GenerationError):
        return error
    if isinstance(error, RagChatError):
        return GenerationError(error.message)
    return GenerationError(str(error))


def _to_messages(messages: list[BaseMessage]) -> list[Message]:
    return [from_langchain(m) for m in messages]


class LLMNode:
    """Base for nodes that send a prompt to the chat provider."""

    def __init__(
        self,
        chat_model: LLMProvider,
        node_name: str,
        default_language: str = DEFAULT_LANGUAGE,
    ):
        self.chat_model = chat_model
        self.node_name = node_name
        self.default_language = default_language

    def _emit(self, config: Optional[RunnableConfig], text: str) -> None:
        """Publish ``text`` as one token event when the run streams tokens."""
        if text and configurable(config).get("stream_tokens"):
            writer = get_stream_writer()
            writer({"node": self.node_name, "event": "token", "data": text})

    async def generate(self, prompt: list[Message], config: Optional[RunnableConfig] = None) -> Message:
        """Ask the provider for a reply, streaming it if the run asks for tokens."""
        if not configurable(config).get("stream_tokens"):
            return await self.chat_model.invoke(prompt)

        writer = get_stream_writer()
        reply: Optional[Message] = None
        pieces: list[str] = []
        events = self.chat_model.stream(prompt)
        try:
            async for event in events:
                if event.type == "content_delta" and event.delta:
                    pieces.append(event.delta)
                    writer({"node": self.node_name, "event": "token", "data": event.delta})
                elif event.type == "message_end" and event.message is not None:
                    reply = event.message
        finally:
            await events.aclose()
        return reply or Message.assistant("".join(pieces))


class ChatNode(LLMNode):
    """A node whose reply is the provider's answer to one prompt.

    Provider failures are raised as ``GenerationError``.
    """

    @abstractmethod
    async def build_prompt(self, state: ConversationState, config: Optional[RunnableConfig]) -> list[Message]:
        """Assemble the messages sent to the provider."""
        pass

    async def run(self, state: ConversationState, config: Optional[RunnableConfig] = None) -> dict[str, Any]:
        prompt = await self.build_prompt(state, config)
        try:
            reply = await self.generate(prompt, config)
        except Exception as e:
            raise _as_generation_error(e) from e
        return {"messages": [to_langchain(reply)]}


class ModelNode(ChatNode):
    """Plain chat: trimmed thread history behind a system prompt."""

    def __init__(
        self,
        chat_model: LLMProvider,
        trimmer: Optional[Runnable] = None,
        system_prompt: Optional[str] = CHAT_SYSTEM_PROMPT,
        default_language: str = DEFAULT_LANGUAGE,
        node_name: str = "model",
    ):
        super().__init__(chat_model, node_name, default_language)
        self.trimmer = trimmer or create_trimmer()
        self.system_prompt = system_prompt

    async def build_prompt(self, state: ConversationState, config: Optional[RunnableConfig]) -> list[Message]:
        history = _to_messages(self.trimmer.invoke(state["messages"]))
        if not self.system_prompt:
            return history

        language = resolve_language(state, config, self.default_language)
        system = Message.system(self.system_prompt.replace("{language}", language))
        return [system] + history


class TranslateNode(ChatNode):
    """Translate the latest user message into the thread's target language."""

    def __init__(
        self,
        chat_model: LLMProvider,
        default_language: str = DEFAULT_LANGUAGE,
        node_name: str = "translate",
    ):
        super().__init__(chat_model, node_name, default_language)

    async def build_prompt(self, state: ConversationState, config: Optional[RunnableConfig]) -> list[Message]:
        messages = _to_messages(state["messages"])
        latest = next((m for m in reversed(messages) if m.role == Role.USER), None)
        text = latest.text if latest is not None else ""
        language = resolve_language(state, config, self.default_language)
        return [
            Message.system(TRANSLATE_SYSTEM_PROMPT.format(language=language)),
            Message.user(text),
        ]


class RagNode(LLMNode):
    """
    Retrieval-augmented chat.

    The latest message is the query and everything before it is chat
    history. Retrieved chunks are rendered into a grounded system prompt
    and recorded in the state's ``context``. Retrieval or generation
    failures become an assistant message describing the error; nothing is
    raised.
    """

    def __init__(
        self,
        chat_model: LLMProvider,
        retriever: BaseRetriever,
        k: Optional[int] = None,
        history_trimmer: Optional[Runnable] = None,
        default_language: str = DEFAULT_LANGUAGE,
        node_name: str = "ragModel",
    ):
        super().__init__(chat_model, node_name, default_language)
        self.retriever = retriever
        self.k = k
        self.history_trimmer = history_trimmer

    def build_prompt(
        self,
        state: ConversationState,
        chunks: list[Chunk],
        config: Optional[RunnableConfig],
    ) -> list[Message]:
        messages = state["messages"]
        history = messages[:-1]
        if self.history_trimmer is not None:
            history = self.history_trimmer.invoke(history)

        context = format_documents(chunks) or NO_CONTEXT
        language = resolve_language(state, config, self.default_language)
        system = Message.system(RAG_SYSTEM_PROMPT.format(language=language, context=context))
        return [system] + _to_messages(history) + _to_messages(messages[-1:])

    def _reply(
        self,
        reply: Message,
        chunks: list[Chunk],
        config: Optional[RunnableConfig],
        emit: bool = True,
    ) -> dict[str, Any]:
        if emit:
            self._emit(config, reply.text)
        return {
            "messages": [to_langchain(reply)],
            "context": [chunk.model_dump() for chunk in chunks],
        }

    async def run(self, state: ConversationState, config: Optional[RunnableConfig] = None) -> dict[str, Any]:
        messages = state["messages"]
        query = from_langchain(messages[-1]).text if messages else ""
        try:
            chunks = await self.retriever.retrieve(query, self.k)
        except Exception as e:
            error = e if isinstance(e, RetrievalError) else RetrievalError(str(e))
            logger.error(error.message)
            return self._reply(Message.assistant(RETRIEVAL_ERROR_REPLY.format(error=error.message)), [], config)

        logger.info(f"RAG query matched {len(chunks)} chunks")

        try:
            reply = await self.generate(self.build_prompt(state, chunks, config), config)
        except Exception as e:
            error = _as_generation_error(e)
            logger.error(error.message)
            return self._reply(Message.assistant(GENERATION_ERROR_REPLY.format(error=error.message)), chunks, config)

        if not reply.text.strip():
            return self._reply(Message.assistant(NO_INFORMATION_REPLY), chunks, config)
        # Streamed replies were already emitted token by token
        return self._reply(reply, chunks, config, emit=False)
