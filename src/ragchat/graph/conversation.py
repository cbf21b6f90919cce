"""
Single-node conversation graphs compiled over a shared checkpointer.

A ``ConversationGraph`` wraps ``START -> node -> END`` compiled with a
checkpointer keyed by ``configurable.thread_id``. Besides running turns it
keeps the thread consistent: a turn that raises, or a stream that is closed
before it finishes, is removed from the thread again.
"""

from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, Union

from langchain_core.messages import BaseMessage, HumanMessage, RemoveMessage
from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, START, StateGraph

from ragchat.core.events import StreamEvent
from ragchat.core.message import Message, from_langchain, to_langchain
from ragchat.graph.state import ConversationState, thread_config
from ragchat.utils.logging import get_logger

logger = get_logger(__name__)

TurnInput = Union[str, Message]


class ConversationGraph:
    """
    Runnable ``START -> node -> END`` graph bound to a checkpointer.

    Example:
        ```python
        checkpointer = InMemorySaver()
        chat = ConversationGraph("model", ModelNode(provider), checkpointer)

        state = await chat.ainvoke("My name is Ada", thread_id)
        async for event in chat.astream_events("What is my name?", thread_id):
            ...
        ```
    """

    def __init__(self, node_name: str, node: Any, checkpointer: BaseCheckpointSaver):
        self.node_name = node_name
        self.node = node
        self.checkpointer = checkpointer

        builder = StateGraph(ConversationState)
        builder.add_node(node_name, node.run)
        builder.add_edge(START, node_name)
        builder.add_edge(node_name, END)
        self.compiled = builder.compile(checkpointer=checkpointer)

    @staticmethod
    def _input(text: TurnInput) -> dict[str, Any]:
        message = to_langchain(text) if isinstance(text, Message) else HumanMessage(content=text)
        return {"messages": [message]}

    async def ainvoke(
        self,
        text: TurnInput,
        thread_id: str,
        language: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Run one turn and wait for it to finish.

        Args:
            text: New message; a string becomes a user message
            thread_id: Conversation to run on
            language: Target language for this turn only

        Returns:
            Final state values; ``messages`` is the full thread
        """
        config = thread_config(thread_id, language)
        before = await self._message_ids(thread_id)
        try:
            return await self.compiled.ainvoke(self._input(text), config)
        except BaseException:
            await self._discard(thread_id, before)
            raise

    async def astream_events(
        self,
        text: TurnInput,
        thread_id: str,
        language: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run one turn, yielding reply tokens and finished messages.

        The turn is kept once the stream is exhausted; closing it early
        removes the turn from the thread.
        """
        config = thread_config(thread_id, language, stream_tokens=True)
        before = await self._message_ids(thread_id)
        completed = False
        try:
            stream = self.compiled.astream(self._input(text), config, stream_mode=["custom", "updates"])
            async with aclosing(stream) as chunks:
                async for mode, payload in chunks:
                    for event in self._to_events(mode, payload):
                        yield event
            completed = True
        finally:
            if not completed:
                await self._discard(thread_id, before)

    @staticmethod
    def _to_events(mode: str, payload: Any) -> list[StreamEvent]:
        if not isinstance(payload, dict):
            return []
        if mode == "custom":
            if payload.get("event") != "token" or not payload.get("data"):
                return []
            return [StreamEvent.content_delta(str(payload["data"]), payload.get("node"))]
        if mode != "updates":
            return []

        events = []
        for node_name, delta in payload.items():
            if not isinstance(delta, dict) or str(node_name).startswith("__"):
                continue
            for message in delta.get("messages") or []:
                if isinstance(message, BaseMessage):
                    events.append(StreamEvent.message_end(from_langchain(message), str(node_name)))
        return events

    async def aget_values(self, thread_id: str) -> dict[str, Any]:
        """Stored state of a thread; empty if the thread is unknown."""
        snapshot = await self.compiled.aget_state(thread_config(thread_id))
        return dict(snapshot.values or {})

    async def aget_messages(self, thread_id: str) -> list[Message]:
        values = await self.aget_values(thread_id)
        return [from_langchain(m) for m in values.get("messages", [])]

    async def aset_language(self, thread_id: str, language: str) -> None:
        """Store the thread's default target language."""
        await self.compiled.aupdate_state(
            thread_config(thread_id), {"language": language}, as_node=self.node_name
        )

    async def _message_ids(self, thread_id: str) -> Optional[set[str]]:
        """Ids of the thread's messages, or None if the thread has no checkpoint yet."""
        if await self.checkpointer.aget_tuple(thread_config(thread_id)) is None:
            return None
        values = await self.aget_values(thread_id)
        return {m.id for m in values.get("messages", [])}

    async def _discard(self, thread_id: str, keep: Optional[set[str]]) -> None:
        """Remove messages added to the thread since ``keep`` was read."""
        if keep is None:
            await self.checkpointer.adelete_thread(thread_id)
            logger.info(f"Discarded the unfinished first turn of thread {thread_id}")
            return

        values = await self.aget_values(thread_id)
        stale = [m.id for m in values.get("messages", []) if m.id not in keep]
        if not stale:
            return
        config: RunnableConfig = thread_config(thread_id)
        await self.compiled.aupdate_state(
            config, {"messages": [RemoveMessage(id=i) for i in stale]}, as_node=self.node_name
        )
        logger.info(f"Discarded {len(stale)} messages of an unfinished turn on thread {thread_id}")
