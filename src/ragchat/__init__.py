"""
ragchat - a chat and translation assistant with thread memory and a RAG knowledge base.
"""

from ragchat.app import ChatApp, TurnResult, create_app
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
from ragchat.core.message import Message, Role, extract_text
from ragchat.graph import (
    ConversationGraph,
    ConversationState,
    ModelNode,
    RagNode,
    TranslateNode,
    create_trimmer,
)
from ragchat.providers import LLMProvider, OpenAIProvider
from ragchat.rag import (
    Chunk,
    Document,
    DocumentLoader,
    DocumentProcessor,
    FakeEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
    RetrieverBuilder,
    VectorRetriever,
    VectorStoreFactory,
    VectorStoreOptions,
)
from ragchat.state import PersistentSaver, RedisSaver, SQLiteSaver
from ragchat.utils.config import AppConfig, load_config

__version__ = "0.1.0"
__all__ = [
    # App
    "ChatApp",
    "TurnResult",
    "create_app",
    "AppConfig",
    "load_config",
    # Core
    "Message",
    "Role",
    "extract_text",
    "StreamEvent",
    "collect_text",
    # Errors
    "RagChatError",
    "ConfigurationError",
    "IngestionError",
    "RetrievalError",
    "GenerationError",
    "CollectionNotFoundError",
    "OperationTimeoutError",
    # Graph
    "ConversationGraph",
    "ConversationState",
    "create_trimmer",
    "ModelNode",
    "RagNode",
    "TranslateNode",
    # Providers
    "LLMProvider",
    "OpenAIProvider",
    # RAG
    "Document",
    "Chunk",
    "DocumentLoader",
    "DocumentProcessor",
    "FakeEmbedding",
    "OpenAIEmbedding",
    "LocalEmbedding",
    "VectorStoreFactory",
    "VectorStoreOptions",
    "RetrieverBuilder",
    "VectorRetriever",
    # State
    "PersistentSaver",
    "SQLiteSaver",
    "RedisSaver",
]
