"""Knowledge-base to retriever orchestration."""

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from ragchat.core.exceptions import ConfigurationError
from ragchat.utils.timeout import with_timeout

from .backends import MemoryBackend
from .base import BaseEmbedding
from .factory import VectorStoreFactory, VectorStoreOptions, coerce_vector
from .loader import DocumentLoader
from .processor import DocumentProcessor
from .retriever import VectorRetriever
from .vectorstore import VectorStore

logger = logging.getLogger(__name__)


class ChunkProfile(BaseModel):
    """Chunking window and default top-k for a corpus size."""
    chunk_size: int
    chunk_overlap: int
    k: int


DEFAULT_PROFILE = ChunkProfile(chunk_size=800, chunk_overlap=200, k=4)
# Larger corpora retrieve more chunks since results are not re-ranked
LARGE_FILE_PROFILE = ChunkProfile(chunk_size=1200, chunk_overlap=300, k=30)

PROFILES = {
    "default": DEFAULT_PROFILE,
    "large": LARGE_FILE_PROFILE,
}


class RetrieverBuilder:
    """Build a retriever from a knowledge directory, or attach to an existing index.

    Example:
        ```python
        builder = RetrieverBuilder(OpenAIEmbedding(), knowledge_dir="knowledge")

        # Full re-index
        retriever = await builder.build()

        # Reuse what a previous build wrote
        retriever = builder.connect()
        ```
    """

    def __init__(
        self,
        embedding: BaseEmbedding,
        knowledge_dir: str | Path = "knowledge",
        chunk_size: int = LARGE_FILE_PROFILE.chunk_size,
        chunk_overlap: int = LARGE_FILE_PROFILE.chunk_overlap,
        k: int = LARGE_FILE_PROFILE.k,
        store_options: Optional[VectorStoreOptions] = None,
        factory: Optional[VectorStoreFactory] = None,
        loader: Optional[DocumentLoader] = None,
        processor: Optional[DocumentProcessor] = None,
    ):
        """Initialize the builder.

        Args:
            embedding: Embedding model used for chunks and queries
            knowledge_dir: Directory holding the source files
            chunk_size: Maximum characters per chunk
            chunk_overlap: Characters shared by adjacent chunks
            k: Default number of chunks per query
            store_options: Collection and batching options
            factory: Vector store factory (Chroma by URL if None)
            loader: Document loader (one for ``knowledge_dir`` if None)
            processor: Document processor (built from the chunk sizes if None)
        """
        if chunk_overlap >= chunk_size:
            raise ConfigurationError("chunk_overlap must be less than chunk_size", operation="build")

        self.embedding = embedding
        self.knowledge_dir = Path(knowledge_dir)
        self.k = k
        self.store_options = store_options or VectorStoreOptions()
        self.factory = factory or VectorStoreFactory()
        self.loader = loader or DocumentLoader(self.knowledge_dir)
        self.processor = processor or DocumentProcessor(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.store: Optional[VectorStore] = None

    @classmethod
    def from_profile(
        cls,
        embedding: BaseEmbedding,
        profile: str | ChunkProfile = "large",
        **kwargs: Any,
    ) -> "RetrieverBuilder":
        """Create a builder using a named or explicit chunking profile."""
        if isinstance(profile, str):
            if profile not in PROFILES:
                raise ConfigurationError(f"Unknown chunking profile: {profile!r}", operation="build")
            profile = PROFILES[profile]

        kwargs.setdefault("chunk_size", profile.chunk_size)
        kwargs.setdefault("chunk_overlap", profile.chunk_overlap)
        kwargs.setdefault("k", profile.k)
        return cls(embedding, **kwargs)

    @classmethod
    def in_memory(
        cls,
        embedding: BaseEmbedding,
        knowledge_dir: str | Path = "knowledge",
        **kwargs: Any,
    ) -> "RetrieverBuilder":
        """Create a builder over a process-local store with the default profile."""
        kwargs.setdefault("factory", VectorStoreFactory(MemoryBackend()))
        return cls.from_profile(embedding, DEFAULT_PROFILE, knowledge_dir=knowledge_dir, **kwargs)

    async def test_embeddings(self) -> bool:
        """Check the embedding model with a short query.

        Returns:
            True if a usable vector came back
        """
        try:
            vector = await with_timeout(
                self.embedding.embed_query("test"),
                self.store_options.timeout,
                "embed_query",
            )
        except Exception as e:
            logger.error(f"Embedding check failed: {e}")
            return False

        vector = coerce_vector(vector)
        if vector is None:
            logger.error("Embedding check returned an empty or malformed vector")
            return False

        logger.info(f"Embedding check ok (dimension {len(vector)})")
        return True

    async def build(self, k: Optional[int] = None, **overrides: Any) -> VectorRetriever:
        """Re-index the knowledge directory and return a retriever over it.

        Args:
            k: Default number of chunks per query (builder default if None)
            **overrides: ``VectorStoreOptions`` fields for this build

        Raises:
            ConfigurationError: If the embedding check fails or the directory is missing
            IngestionError: If a batch fails to embed or insert
        """
        if not await self.test_embeddings():
            raise ConfigurationError(
                "Embedding model is not usable; check the API key, model name and base URL",
                operation="build",
            )

        documents = await self.loader.load_documents()
        chunks = self.processor.split_documents(documents)
        chunks = self.processor.sanitize_metadata(chunks)

        processing = self.processor.validate_processing_integrity(documents, chunks)
        logger.info(
            f"Processing: {processing.original_docs_count} documents -> "
            f"{processing.processed_chunks_count} chunks, "
            f"retention {processing.content_retention_rate}%, "
            f"{processing.average_chunks_per_doc} chunks/doc"
        )

        store = await self.factory.create_store(chunks, self.embedding, self.store_options, **overrides)
        integrity = await self.factory.validate_integrity(store, store.last_build.inserted_total)
        if not integrity.count_matches:
            logger.warning(
                f"Collection '{store.collection_name}' holds {integrity.actual_count} items, "
                f"expected {integrity.expected_count}"
            )

        self.store = store
        return store.as_retriever(k or self.k)

    def connect(self, k: Optional[int] = None, **overrides: Any) -> VectorRetriever:
        """Wrap an existing collection without loading or indexing anything."""
        store = self.factory.connect_to_existing(self.embedding, self.store_options, **overrides)
        self.store = store
        return store.as_retriever(k or self.k)
