"""
Conversation graphs - langgraph state, nodes, trimming and prompts.
"""

from ragchat.graph.conversation import ConversationGraph
from ragchat.graph.nodes import ChatNode, LLMNode, ModelNode, RagNode, TranslateNode, resolve_language
from ragchat.graph.prompts import (
    CHAT_SYSTEM_PROMPT,
    DOCUMENT_PROMPT,
    NO_INFORMATION_REPLY,
    RAG_SYSTEM_PROMPT,
    TRANSLATE_SYSTEM_PROMPT,
    format_documents,
)
from ragchat.graph.state import ConversationState, new_thread_id, thread_config
from ragchat.graph.trimming import approximate_token_counter, create_trimmer

__all__ = [
    "ConversationGraph",
    "ConversationState",
    "new_thread_id",
    "thread_config",
    "LLMNode",
    "ChatNode",
    "ModelNode",
    "RagNode",
    "TranslateNode",
    "resolve_language",
    "create_trimmer",
    "approximate_token_counter",
    "CHAT_SYSTEM_PROMPT",
    "RAG_SYSTEM_PROMPT",
    "DOCUMENT_PROMPT",
    "TRANSLATE_SYSTEM_PROMPT",
    "NO_INFORMATION_REPLY",
    "format_documents",
]
