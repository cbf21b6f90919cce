"""
Application wiring: chat, RAG and translation graphs over shared thread memory.

``create_app`` builds every collaborator from an ``AppConfig`` (or takes
them ready-made) and returns a ``ChatApp``; nothing is created at import
time, so several independent apps can live in one process.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import AsyncIterator, Literal, Optional

from langchain_core.runnables import Runnable
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import InMemorySaver
from pydantic import BaseModel, Field

from ragchat.core.events import StreamEvent
from ragchat.core.exceptions import ConfigurationError, GenerationError
from ragchat.core.message import Message, from_langchain
from ragchat.graph.conversation import ConversationGraph
from ragchat.graph.nodes import ModelNode, RagNode, TranslateNode
from ragchat.graph.prompts import CHAT_SYSTEM_PROMPT, GENERATION_ERROR_REPLY
from ragchat.graph.state import new_thread_id
from ragchat.graph.trimming import approximate_token_counter, create_trimmer
from ragchat.providers.base import LLMProvider
from ragchat.providers.openai import OpenAIProvider
from ragchat.rag.backends import CollectionInfo, MemoryBackend
from ragchat.rag.base import BaseEmbedding, BaseRetriever
from ragchat.rag.builder import PROFILES, RetrieverBuilder
from ragchat.rag.document import Chunk
from ragchat.rag.embeddings import FakeEmbedding, LocalEmbedding, OpenAIEmbedding
from ragchat.rag.factory import VectorStoreFactory, VectorStoreOptions
from ragchat.state.redis_backend import RedisSaver
from ragchat.state.sqlite_backend import SQLiteSaver
from ragchat.utils.config import AppConfig, EmbeddingConfig, LLMConfig, MemoryConfig, RAGConfig
from ragchat.utils.logging import get_logger, set_log_level

logger = get_logger(__name__)

Mode = Literal["chat", "rag", "translate"]


class TurnResult(BaseModel):
    """Outcome of one conversational turn."""
    reply: str
    thread_id: str
    sources: list[Chunk] = Field(default_factory=list)
    # Set when the turn failed; the reply then describes the failure and the thread is unchanged
    error: Optional[str] = None


def build_chat_graph(
    chat_model: LLMProvider,
    checkpointer: BaseCheckpointSaver,
    trimmer: Optional[Runnable] = None,
    system_prompt: Optional[str] = CHAT_SYSTEM_PROMPT,
    default_language: str = "Chinese",
) -> ConversationGraph:
    """START -> model -> END"""
    node = ModelNode(chat_model, trimmer, system_prompt, default_language)
    return ConversationGraph("model", node, checkpointer)


def build_rag_graph(
    chat_model: LLMProvider,
    retriever: BaseRetriever,
    checkpointer: BaseCheckpointSaver,
    k: Optional[int] = None,
    history_trimmer: Optional[Runnable] = None,
    default_language: str = "Chinese",
) -> ConversationGraph:
    """START -> ragModel -> END"""
    node = RagNode(chat_model, retriever, k, history_trimmer, default_language)
    return ConversationGraph("ragModel", node, checkpointer)


def build_translate_graph(
    chat_model: LLMProvider,
    checkpointer: BaseCheckpointSaver,
    default_language: str = "Chinese",
) -> ConversationGraph:
    """START -> translate -> END"""
    return ConversationGraph("translate", TranslateNode(chat_model, default_language), checkpointer)


class ChatApp:
    """
    Conversational front door.

    Turns on the same thread are serialized across all modes; the graphs
    share one checkpointer, so a thread's history is common to them.

    Example:
        ```python
        app = await create_app(load_config())

        result = await app.run_turn("My name is Ada")
        result = await app.run_turn("What is my name?", thread_id=result.thread_id)

        result = await app.run_turn("What is RAG?", thread_id=result.thread_id, mode="rag")
        ```
    """

    def __init__(
        self,
        chat_graph: Optional[ConversationGraph],
        checkpointer: BaseCheckpointSaver,
        rag_graph: Optional[ConversationGraph] = None,
        translate_graph: Optional[ConversationGraph] = None,
        factory: Optional[VectorStoreFactory] = None,
        store_options: Optional[VectorStoreOptions] = None,
    ):
        self.chat_graph = chat_graph
        self.rag_graph = rag_graph
        self.translate_graph = translate_graph
        self.checkpointer = checkpointer
        self.factory = factory
        self.store_options = store_options or VectorStoreOptions()
        # Entries vanish once no turn holds or waits on the lock
        self._thread_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @staticmethod
    def new_thread_id() -> str:
        return new_thread_id()

    def thread_lock(self, thread_id: str) -> asyncio.Lock:
        """Lock serializing turns on one thread across every mode."""
        lock = self._thread_locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._thread_locks[thread_id] = lock
        return lock

    def _graph(self, mode: Mode) -> ConversationGraph:
        graphs = {
            "chat": self.chat_graph,
            "rag": self.rag_graph,
            "translate": self.translate_graph,
        }
        if mode not in graphs:
            raise ValueError(f"Unknown mode: {mode}")
        if graphs[mode] is None:
            raise ConfigurationError(f"Mode '{mode}' is not enabled", operation="run_turn")
        return graphs[mode]

    def _any_graph(self) -> ConversationGraph:
        graph = self.chat_graph or self.translate_graph or self.rag_graph
        if graph is None:
            raise ConfigurationError("No conversation graph configured", operation="history")
        return graph

    async def run_turn(
        self,
        text: str,
        thread_id: Optional[str] = None,
        mode: Mode = "chat",
        language: Optional[str] = None,
    ) -> TurnResult:
        """
        Send one user message and wait for the reply.

        Args:
            text: User message
            thread_id: Conversation to continue; a new one is started if None
            mode: "chat", "rag" or "translate"
            language: Target language for this turn only

        Returns:
            The reply, the thread id to resupply next time, and RAG sources
        """
        thread_id = thread_id or new_thread_id()
        graph = self._graph(mode)
        async with self.thread_lock(thread_id):
            try:
                state = await graph.ainvoke(text, thread_id, language)
            except GenerationError as e:
                logger.error(f"Turn on thread {thread_id} failed: {e}")
                return TurnResult(
                    reply=GENERATION_ERROR_REPLY.format(error=e.message),
                    thread_id=thread_id,
                    error=str(e),
                )

        messages = state.get("messages", [])
        reply = from_langchain(messages[-1]).text if messages else ""
        sources = [Chunk.model_validate(c) for c in state.get("context", [])] if mode == "rag" else []
        return TurnResult(reply=reply, thread_id=thread_id, sources=sources)

    async def stream_turn(
        self,
        text: str,
        thread_id: Optional[str] = None,
        mode: Mode = "chat",
        language: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send one user message and stream the reply as typed events.

        The turn is saved once the stream is exhausted; closing the iterator
        early (e.g. with ``contextlib.aclosing``) discards it. A generation
        failure ends the stream with an apology that is not saved.
        """
        thread_id = thread_id or new_thread_id()
        graph = self._graph(mode)
        async with self.thread_lock(thread_id):
            events = graph.astream_events(text, thread_id, language)
            try:
                async for event in events:
                    yield event
            except GenerationError as e:
                logger.error(f"Streamed turn on thread {thread_id} failed: {e}")
                reply = GENERATION_ERROR_REPLY.format(error=e.message)
                yield StreamEvent.content_delta(reply)
                yield StreamEvent.message_end(Message.assistant(reply))
            finally:
                await events.aclose()

    async def history(self, thread_id: str) -> list[Message]:
        return await self._any_graph().aget_messages(thread_id)

    async def list_threads(self) -> list[str]:
        threads = set()
        async for item in self.checkpointer.alist(None):
            threads.add(item.config["configurable"]["thread_id"])
        return sorted(threads)

    async def set_language(self, thread_id: str, language: str) -> None:
        """Set the default target language of a thread."""
        async with self.thread_lock(thread_id):
            await self._any_graph().aset_language(thread_id, language)

    async def delete_thread(self, thread_id: str) -> None:
        """Forget a thread's history and settings."""
        async with self.thread_lock(thread_id):
            await self.checkpointer.adelete_thread(thread_id)
        logger.info(f"Deleted thread {thread_id}")

    async def clean_collection(self) -> bool:
        """Delete the configured collection; a missing one counts as cleaned."""
        if self.factory is None:
            raise ConfigurationError("No vector store configured", operation="clean_collection")
        return await self.factory.clean_collection(self.store_options)

    async def list_collections(self) -> list[CollectionInfo]:
        if self.factory is None:
            raise ConfigurationError("No vector store configured", operation="list_collections")
        return await self.factory.list_collections(self.store_options)


def create_chat_model(config: LLMConfig) -> LLMProvider:
    return OpenAIProvider(
        model=config.model,
        api_key=config.api_key,
        base_url=config.base_url,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.timeout,
    )


def create_embedding(config: EmbeddingConfig) -> BaseEmbedding:
    if config.provider == "openai":
        return OpenAIEmbedding(
            model=config.model or "text-embedding-3-small",
            api_key=config.api_key,
            base_url=config.base_url,
            batch_size=config.batch_size,
        )
    if config.provider == "local":
        return LocalEmbedding(model_name=config.model) if config.model else LocalEmbedding()
    return FakeEmbedding()


def create_checkpointer(config: MemoryConfig) -> BaseCheckpointSaver:
    if config.backend == "sqlite":
        return SQLiteSaver(config.sqlite_path)
    if config.backend == "redis":
        return RedisSaver(config.redis_url, ttl=config.ttl)
    return InMemorySaver()


def create_store_options(config: RAGConfig) -> VectorStoreOptions:
    return VectorStoreOptions(
        collection_name=config.collection_name,
        url=config.vector_store_url,
        batch_size=config.batch_size,
        reset_collection=config.reset_collection,
        embed_sub_batch_size=config.embed_sub_batch_size,
        embed_concurrency=config.embed_concurrency,
        pre_embed_filter=config.pre_embed_filter,
        timeout=config.timeout,
    )


def create_builder(
    config: RAGConfig,
    embedding: BaseEmbedding,
    factory: Optional[VectorStoreFactory] = None,
) -> RetrieverBuilder:
    """Builder for the configured profile, with explicit sizes taking precedence."""
    profile = PROFILES[config.profile]
    if factory is None:
        factory = VectorStoreFactory(MemoryBackend()) if config.backend == "memory" else VectorStoreFactory()

    return RetrieverBuilder(
        embedding,
        knowledge_dir=config.knowledge_dir,
        chunk_size=config.chunk_size or profile.chunk_size,
        chunk_overlap=config.chunk_overlap if config.chunk_overlap is not None else profile.chunk_overlap,
        k=config.k or profile.k,
        store_options=create_store_options(config),
        factory=factory,
    )


async def create_app(
    config: Optional[AppConfig] = None,
    *,
    chat_model: Optional[LLMProvider] = None,
    embedding: Optional[BaseEmbedding] = None,
    retriever: Optional[BaseRetriever] = None,
    checkpointer: Optional[BaseCheckpointSaver] = None,
    factory: Optional[VectorStoreFactory] = None,
) -> ChatApp:
    """
    Build a ChatApp from configuration.

    Any collaborator passed explicitly replaces the one the configuration
    would create. With RAG enabled and no retriever given, the knowledge
    directory is indexed (or the existing collection attached, when
    ``rag.connect_existing`` is set).

    Raises:
        ConfigurationError: If the embedding check fails or options are invalid
        IngestionError: If indexing a batch fails
    """
    config = config or AppConfig()
    set_log_level(config.log_level)

    chat_model = chat_model or create_chat_model(config.llm)
    checkpointer = checkpointer or create_checkpointer(config.memory)
    trimmer = create_trimmer(
        max_tokens=config.memory.max_tokens,
        token_counter=approximate_token_counter(config.memory.chars_per_token),
    )
    language = config.default_language

    chat_graph = build_chat_graph(
        chat_model,
        checkpointer,
        trimmer,
        system_prompt=config.memory.system_prompt or CHAT_SYSTEM_PROMPT,
        default_language=language,
    )
    translate_graph = build_translate_graph(chat_model, checkpointer, default_language=language)

    rag_graph = None
    if config.enable_rag:
        builder = create_builder(config.rag, embedding or create_embedding(config.embedding), factory)
        factory = builder.factory
        if retriever is None:
            retriever = builder.connect() if config.rag.connect_existing else await builder.build()
        rag_graph = build_rag_graph(
            chat_model,
            retriever,
            checkpointer,
            history_trimmer=trimmer,
            default_language=language,
        )
        logger.info("RAG graph ready")

    return ChatApp(
        chat_graph,
        checkpointer,
        rag_graph=rag_graph,
        translate_graph=translate_graph,
        factory=factory,
        store_options=create_store_options(config.rag),
    )
