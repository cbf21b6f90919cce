"""Retrieval pipeline for ragchat.

This package turns a directory of files into a query-able retriever:
- Document, chunk and search-result data structures
- Embedding providers (OpenAI, local, fake)
- Directory loading with per-extension file loaders
- Recursive chunking and metadata sanitization
- Vector store backends (ChromaDB server, in-memory) and their lifecycle
- Retriever building from a knowledge directory

Example:
    ```python
    from ragchat.rag import FakeEmbedding, RetrieverBuilder

    builder = RetrieverBuilder.in_memory(FakeEmbedding(), knowledge_dir="knowledge")
    retriever = await builder.build()

    chunks = await retriever.retrieve("What is Python?")
    ```
"""

# Data structures
from .document import Document, Chunk, SearchResult

# Base classes
from .base import (
    BaseEmbedding,
    BaseRetriever,
    BaseChunker,
    BaseFileLoader,
)

# Embedding providers
from .embeddings import (
    FakeEmbedding,
    OpenAIEmbedding,
    LocalEmbedding,
)

# Loading and processing
from .loader import DocumentLoader, LoadFailure, PDFFileLoader, TextFileLoader
from .chunking import RecursiveChunker
from .processor import DocumentProcessor, ProcessingIntegrityReport, sanitize_value

# Vector stores
from .backends import (
    ChromaBackend,
    CollectionInfo,
    MemoryBackend,
    VectorStoreBackend,
    cosine_similarity,
)
from .vectorstore import IngestionReport, VectorStore
from .factory import StoreIntegrityReport, VectorStoreFactory, VectorStoreOptions

# Retrieval
from .retriever import VectorRetriever
from .builder import (
    DEFAULT_PROFILE,
    LARGE_FILE_PROFILE,
    ChunkProfile,
    RetrieverBuilder,
)

__all__ = [
    # Data structures
    "Document",
    "Chunk",
    "SearchResult",
    # Base classes
    "BaseEmbedding",
    "BaseRetriever",
    "BaseChunker",
    "BaseFileLoader",
    # Embeddings
    "FakeEmbedding",
    "OpenAIEmbedding",
    "LocalEmbedding",
    # Loading and processing
    "DocumentLoader",
    "LoadFailure",
    "PDFFileLoader",
    "TextFileLoader",
    "RecursiveChunker",
    "DocumentProcessor",
    "ProcessingIntegrityReport",
    "sanitize_value",
    # Vector stores
    "ChromaBackend",
    "CollectionInfo",
    "MemoryBackend",
    "VectorStoreBackend",
    "cosine_similarity",
    "IngestionReport",
    "VectorStore",
    "StoreIntegrityReport",
    "VectorStoreFactory",
    "VectorStoreOptions",
    # Retrieval
    "VectorRetriever",
    "DEFAULT_PROFILE",
    "LARGE_FILE_PROFILE",
    "ChunkProfile",
    "RetrieverBuilder",
]
