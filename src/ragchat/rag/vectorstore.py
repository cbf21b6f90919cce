"""Vector store handle bound to one collection."""

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel

from ragchat.utils.timeout import with_timeout

from .backends import VectorStoreBackend
from .base import BaseEmbedding
from .document import Chunk, SearchResult

if TYPE_CHECKING:
    from .retriever import VectorRetriever

logger = logging.getLogger(__name__)


class IngestionReport(BaseModel):
    """Accounting for one store build.

    ``inserted_total + empty_content_filtered + empty_vector_filtered``
    always equals ``input_count``.
    """
    collection_name: str
    input_count: int = 0
    empty_content_filtered: int = 0
    empty_vector_filtered: int = 0
    inserted_total: int = 0
    batches_total: int = 0
    batches_skipped: int = 0

    @property
    def filtered_total(self) -> int:
        return self.empty_content_filtered + self.empty_vector_filtered


class VectorStore:
    """Handle for querying and extending a single collection.

    The handle does not check that the collection exists; the first query
    against a missing collection raises ``CollectionNotFoundError``.
    """

    def __init__(
        self,
        backend: VectorStoreBackend,
        embedding: BaseEmbedding,
        collection_name: str,
        timeout: Optional[float] = 60.0,
    ):
        self.backend = backend
        self.embedding = embedding
        self.collection_name = collection_name
        self.timeout = timeout
        self.last_build: Optional[IngestionReport] = None

    async def add_chunks(
        self,
        chunks: list[Chunk],
        embeddings: Optional[list[list[float]]] = None,
    ) -> list[str]:
        """Append chunks to the collection.

        Each call is an insert, never an upsert: the stored copies get fresh
        ids, so adding the same chunks twice stores them twice.

        Args:
            chunks: Chunks to insert
            embeddings: Precomputed vectors; computed here when None

        Returns:
            IDs of the inserted chunks
        """
        if not chunks:
            return []

        if embeddings is None:
            embeddings = await with_timeout(
                self.embedding.embed_documents([chunk.content for chunk in chunks]),
                self.timeout,
                "embed_documents",
            )

        stored = [chunk.model_copy(update={"id": str(uuid.uuid4())}) for chunk in chunks]
        return await self.backend.add(self.collection_name, stored, embeddings)

    async def similarity_search_with_score(
        self,
        query: str,
        k: int = 4,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Embed ``query`` and return the top ``k`` hits with scores."""
        query_embedding = await with_timeout(
            self.embedding.embed_query(query), self.timeout, "embed_query"
        )
        return await self.backend.search(self.collection_name, query_embedding, k, filter)

    async def similarity_search(
        self,
        query: str,
        k: int = 4,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[Chunk]:
        results = await self.similarity_search_with_score(query, k, filter)
        return [result.chunk for result in results]

    async def count(self) -> int:
        """Number of items the backend reports for the collection."""
        info = await self.backend.get_collection_info(self.collection_name)
        return info.count or 0

    def as_retriever(self, k: int = 4) -> "VectorRetriever":
        from .retriever import VectorRetriever

        return VectorRetriever(self, k=k)

    def __repr__(self) -> str:
        return f"VectorStore(collection={self.collection_name!r}, backend={type(self.backend).__name__})"
