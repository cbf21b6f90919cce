"""Vector store backends.

A backend owns named collections of (vector, chunk) pairs. The factory and
store handle in ``factory.py`` / ``vectorstore.py`` drive it; backends only
translate to a concrete storage engine.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from ragchat.core.exceptions import CollectionNotFoundError, ConfigurationError
from ragchat.utils.timeout import with_timeout

from .document import Chunk, SearchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_METRIC = "cosine"


class CollectionInfo(BaseModel):
    """Summary of a collection as reported by the backend."""
    name: str
    count: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


class VectorStoreBackend(ABC):
    """Abstract base class for vector store backends."""

    @abstractmethod
    async def create_collection(self, name: str, metadata: Optional[dict[str, Any]] = None) -> None:
        """Create a collection using the cosine metric; no-op if it exists."""
        pass

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Delete a collection.

        Raises:
            CollectionNotFoundError: If the collection does not exist
        """
        pass

    @abstractmethod
    async def list_collections(self) -> list[CollectionInfo]:
        """List all collections."""
        pass

    @abstractmethod
    async def get_collection_info(self, name: str) -> CollectionInfo:
        """Describe a collection, including its item count.

        Raises:
            CollectionNotFoundError: If the collection does not exist
        """
        pass

    @abstractmethod
    async def add(self, name: str, chunks: list[Chunk], embeddings: list[list[float]]) -> list[str]:
        """Append chunks with their vectors to an existing collection.

        Returns:
            IDs of the added chunks
        """
        pass

    @abstractmethod
    async def search(
        self,
        name: str,
        query_embedding: list[float],
        k: int = 4,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Return the ``k`` most similar chunks, best first."""
        pass


class MemoryBackend(VectorStoreBackend):
    """In-process backend with exact cosine search.

    Collections live as long as the backend object. Suitable for tests and
    small knowledge bases.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Any]] = {}

    def _collection(self, name: str) -> dict[str, Any]:
        if name not in self._collections:
            raise CollectionNotFoundError(name)
        return self._collections[name]

    async def create_collection(self, name: str, metadata: Optional[dict[str, Any]] = None) -> None:
        if name not in self._collections:
            self._collections[name] = {
                "metadata": {"hnsw:space": DEFAULT_METRIC, **(metadata or {})},
                "chunks": {},
                "embeddings": {},
            }

    async def delete_collection(self, name: str) -> None:
        self._collection(name)
        del self._collections[name]

    async def list_collections(self) -> list[CollectionInfo]:
        return [
            CollectionInfo(name=name, count=len(c["chunks"]), metadata=dict(c["metadata"]))
            for name, c in self._collections.items()
        ]

    async def get_collection_info(self, name: str) -> CollectionInfo:
        collection = self._collection(name)
        return CollectionInfo(
            name=name,
            count=len(collection["chunks"]),
            metadata=dict(collection["metadata"]),
        )

    async def add(self, name: str, chunks: list[Chunk], embeddings: list[list[float]]) -> list[str]:
        if len(chunks) != len(embeddings):
            raise ValueError("Number of chunks must match number of embeddings")

        collection = self._collection(name)
        for chunk, embedding in zip(chunks, embeddings):
            collection["chunks"][chunk.id] = chunk
            collection["embeddings"][chunk.id] = list(embedding)

        logger.debug(f"Added {len(chunks)} chunks to memory collection '{name}'")
        return [chunk.id for chunk in chunks]

    async def search(
        self,
        name: str,
        query_embedding: list[float],
        k: int = 4,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        collection = self._collection(name)
        if not query_embedding:
            return []

        scored = []
        for chunk_id, embedding in collection["embeddings"].items():
            chunk = collection["chunks"][chunk_id]
            if filter and not self._matches_filter(chunk, filter):
                continue
            scored.append((cosine_similarity(query_embedding, embedding), chunk))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [SearchResult(chunk=chunk, score=score) for score, chunk in scored[:k]]

    @staticmethod
    def _matches_filter(chunk: Chunk, filter: dict[str, Any]) -> bool:
        return all(chunk.metadata.get(key) == value for key, value in filter.items())


def _is_not_found(error: Exception) -> bool:
    """Chroma reports missing collections with different types across versions."""
    return type(error).__name__ == "NotFoundError" or "does not exist" in str(error).lower()


class ChromaBackend(VectorStoreBackend):
    """ChromaDB server backend addressed by URL.

    All client calls run in a worker thread and are bounded by ``timeout``.
    """

    def __init__(self, url: str = "http://localhost:8000", timeout: Optional[float] = 60.0):
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigurationError(f"Invalid vector store URL: {url!r}", operation="connect")

        self.url = url
        self.host = parsed.hostname
        self.port = parsed.port or 8000
        self.ssl = parsed.scheme == "https"
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        """Get or create the ChromaDB HTTP client."""
        if self._client is None:
            try:
                import chromadb
                from chromadb.config import Settings
            except ImportError:
                raise ImportError(
                    "ChromaDB backend requires 'chromadb'. "
                    "Install it with: pip install chromadb"
                )

            self._client = chromadb.HttpClient(
                host=self.host,
                port=self.port,
                ssl=self.ssl,
                settings=Settings(anonymized_telemetry=False),
            )
        return self._client

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await with_timeout(loop.run_in_executor(None, fn), self.timeout, operation)

    def _get_collection(self, name: str):
        try:
            return self._get_client().get_collection(name=name)
        except Exception as e:
            if _is_not_found(e):
                raise CollectionNotFoundError(name) from e
            raise

    async def create_collection(self, name: str, metadata: Optional[dict[str, Any]] = None) -> None:
        collection_metadata = {"hnsw:space": DEFAULT_METRIC, **(metadata or {})}
        await self._run(
            "create_collection",
            lambda: self._get_client().get_or_create_collection(
                name=name,
                metadata=collection_metadata,
            ),
        )

    async def delete_collection(self, name: str) -> None:
        def _delete() -> None:
            try:
                self._get_client().delete_collection(name=name)
            except Exception as e:
                if _is_not_found(e):
                    raise CollectionNotFoundError(name) from e
                raise

        await self._run("delete_collection", _delete)

    async def list_collections(self) -> list[CollectionInfo]:
        collections = await self._run("list_collections", lambda: self._get_client().list_collections())

        infos = []
        for collection in collections:
            # Some client versions return bare names
            if isinstance(collection, str):
                infos.append(CollectionInfo(name=collection))
            else:
                infos.append(CollectionInfo(
                    name=collection.name,
                    metadata=dict(collection.metadata or {}),
                ))
        return infos

    async def get_collection_info(self, name: str) -> CollectionInfo:
        def _info() -> CollectionInfo:
            collection = self._get_collection(name)
            return CollectionInfo(
                name=name,
                count=collection.count(),
                metadata=dict(collection.metadata or {}),
            )

        return await self._run("get_collection_info", _info)

    async def add(self, name: str, chunks: list[Chunk], embeddings: list[list[float]]) -> list[str]:
        if len(chunks) != len(embeddings):
            raise ValueError("Number of chunks must match number of embeddings")

        ids = [chunk.id for chunk in chunks]
        documents = [chunk.content for chunk in chunks]
        metadatas = [self._to_chroma_metadata(chunk) for chunk in chunks]

        await self._run(
            "add",
            lambda: self._get_collection(name).add(
                ids=ids,
                documents=documents,
                embeddings=[list(e) for e in embeddings],
                metadatas=metadatas,
            ),
        )

        logger.debug(f"Added {len(ids)} chunks to ChromaDB collection '{name}'")
        return ids

    async def search(
        self,
        name: str,
        query_embedding: list[float],
        k: int = 4,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        results = await self._run(
            "search",
            lambda: self._get_collection(name).query(
                query_embeddings=[list(query_embedding)],
                n_results=k,
                where=filter or None,
                include=["documents", "metadatas", "distances"],
            ),
        )

        search_results = []
        if results and results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                metadata = dict(results["metadatas"][0][i] or {}) if results["metadatas"] else {}

                chunk = Chunk(
                    id=chunk_id,
                    document_id=metadata.pop("document_id", ""),
                    start_index=metadata.pop("start_index", 0),
                    end_index=metadata.pop("end_index", 0),
                    content=results["documents"][0][i] or "",
                    metadata=metadata,
                )

                # Cosine distance to similarity
                distance = results["distances"][0][i] if results["distances"] else 0
                search_results.append(SearchResult(chunk=chunk, score=1 - distance))

        return search_results

    @staticmethod
    def _to_chroma_metadata(chunk: Chunk) -> dict[str, Any]:
        metadata = {
            "document_id": chunk.document_id,
            "start_index": chunk.start_index,
            "end_index": chunk.end_index,
            **chunk.metadata,
        }
        # Chroma rejects null metadata values
        return {key: value for key, value in metadata.items() if value is not None}
