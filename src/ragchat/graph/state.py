"""
Conversation state shared by the chat, RAG and translation graphs.

Every graph is compiled over ``ConversationState`` and keyed by
``configurable.thread_id``, so the graphs can share one checkpointer and
one thread: a chat turn and a RAG turn on the same thread see the same
message log.
"""

import uuid
from typing import Any, NotRequired, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import MessagesState


class ConversationState(MessagesState):
    """LangGraph state of one thread.

    ``messages`` accumulates through the ``add_messages`` reducer. ``context``
    holds the chunks (as dicts) the last RAG turn answered from, and
    ``language`` the thread's target language.
    """
    context: NotRequired[list[dict[str, Any]]]
    language: NotRequired[str]


def new_thread_id() -> str:
    """Mint a fresh random thread id."""
    return str(uuid.uuid4())


def thread_config(
    thread_id: str,
    language: Optional[str] = None,
    stream_tokens: bool = False,
) -> RunnableConfig:
    """
    Build the run config for one thread.

    Args:
        thread_id: Conversation to run on
        language: Target language for this run only
        stream_tokens: Ask chat nodes to stream tokens to the custom stream

    Returns:
        Config with the thread id under ``configurable``
    """
    configurable: dict[str, Any] = {"thread_id": thread_id}
    if language:
        configurable["language"] = language
    if stream_tokens:
        configurable["stream_tokens"] = True
    return {"configurable": configurable}


def configurable(config: Optional[RunnableConfig]) -> dict[str, Any]:
    if not config:
        return {}
    return config.get("configurable") or {}
