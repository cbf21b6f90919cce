"""
Core module - messages, stream events and errors.
"""

from ragchat.core.events import StreamEvent, collect_text
from ragchat.core.exceptions import (
    CollectionNotFoundError,
    ConfigurationError,
    GenerationError,
    IngestionError,
    OperationTimeoutError,
    RagChatError,
    RetrievalError,
)
from ragchat.core.message import (
    ContentPart,
    ImageContent,
    Message,
    MessageContent,
    Role,
    TextContent,
    extract_text,
    from_langchain,
    to_langchain,
)

__all__ = [
    "Message",
    "Role",
    "TextContent",
    "ImageContent",
    "ContentPart",
    "MessageContent",
    "extract_text",
    "to_langchain",
    "from_langchain",
    "StreamEvent",
    "collect_text",
    "RagChatError",
    "ConfigurationError",
    "IngestionError",
    "RetrievalError",
    "GenerationError",
    "CollectionNotFoundError",
    "OperationTimeoutError",
]
