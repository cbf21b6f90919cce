"""Vector store lifecycle: build, connect, clean, list and verify collections."""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from ragchat.core.exceptions import CollectionNotFoundError, ConfigurationError, IngestionError
from ragchat.utils.timeout import with_timeout

from .backends import ChromaBackend, CollectionInfo, VectorStoreBackend
from .base import BaseEmbedding
from .document import Chunk
from .vectorstore import IngestionReport, VectorStore

logger = logging.getLogger(__name__)


class VectorStoreOptions(BaseModel):
    """Options for building or attaching to a collection."""
    collection_name: str = "langchain-docs"
    url: str = "http://localhost:8000"
    batch_size: int = Field(default=100, gt=0)
    reset_collection: bool = True
    embed_sub_batch_size: int = Field(default=32, gt=0)
    embed_concurrency: int = Field(default=1, ge=1)
    pre_embed_filter: bool = True
    timeout: Optional[float] = 60.0


class StoreIntegrityReport(BaseModel):
    """Outcome of a post-build check; failures are recorded, never raised."""
    is_valid: bool
    expected_count: int
    actual_count: Optional[int] = None
    test_query_success: bool = False
    count_matches: bool = False
    error: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def coerce_vector(vector: Any) -> Optional[list[float]]:
    """Return ``vector`` as a list of floats, or None if it is empty or malformed."""
    if vector is None:
        return None
    if not isinstance(vector, (list, tuple)) and hasattr(vector, "tolist"):
        vector = vector.tolist()
    if not isinstance(vector, (list, tuple)) or not vector:
        return None

    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not math.isfinite(value):
            return None

    return [float(value) for value in vector]


class VectorStoreFactory:
    """Create and manage collections on a vector store backend.

    With no explicit backend, a ``ChromaBackend`` is created per URL found
    in the options and reused for later calls.
    """

    def __init__(self, backend: Optional[VectorStoreBackend] = None):
        self._backend = backend
        self._backends: dict[str, VectorStoreBackend] = {}

    def get_backend(self, options: VectorStoreOptions) -> VectorStoreBackend:
        if self._backend is not None:
            return self._backend
        if options.url not in self._backends:
            self._backends[options.url] = ChromaBackend(options.url, timeout=options.timeout)
        return self._backends[options.url]

    @staticmethod
    def _resolve(options: Optional[VectorStoreOptions], overrides: dict[str, Any]) -> VectorStoreOptions:
        base = options.model_dump() if options is not None else {}
        return VectorStoreOptions(**{**base, **overrides})

    async def create_store(
        self,
        chunks: list[Chunk],
        embedding: BaseEmbedding,
        options: Optional[VectorStoreOptions] = None,
        **overrides: Any,
    ) -> VectorStore:
        """Embed and insert chunks into a (possibly reset) collection.

        Batches run strictly in order. The first batch that still has chunks
        after filtering creates the collection; the rest append to it. A
        failing batch aborts the build with ``IngestionError``; batches
        written before it stay in the collection.

        Args:
            chunks: Chunks to index
            embedding: Embedding model for the chunks
            options: Build options; keyword overrides take precedence

        Returns:
            Store handle whose ``last_build`` holds the ingestion report
        """
        options = self._resolve(options, overrides)
        backend = self.get_backend(options)
        name = options.collection_name

        report = IngestionReport(collection_name=name, input_count=len(chunks))

        valid = [chunk for chunk in chunks if chunk.content and chunk.content.strip()]
        report.empty_content_filtered = len(chunks) - len(valid)
        if report.empty_content_filtered:
            logger.info(f"Removed {report.empty_content_filtered} empty chunks before embedding")

        if options.reset_collection:
            await self._reset(backend, name)

        store = VectorStore(backend, embedding, name, timeout=options.timeout)
        batches = [valid[i:i + options.batch_size] for i in range(0, len(valid), options.batch_size)]
        report.batches_total = len(batches)
        created = False

        for number, batch in enumerate(batches, start=1):
            logger.info(
                f"Processing batch {number}/{len(batches)}: {len(batch)} chunks "
                f"(first {len(batch[0].content)} chars, last {len(batch[-1].content)} chars)"
            )
            try:
                vectors = None
                if options.pre_embed_filter:
                    batch, vectors, dead = await self._embed_batch(batch, embedding, options)
                    report.empty_vector_filtered += dead

                if not batch:
                    report.batches_skipped += 1
                    logger.warning(f"Batch {number} has no valid vectors, skipping")
                    continue

                if not created:
                    await backend.create_collection(name, metadata=self._collection_metadata(options))
                    created = True
                    if options.reset_collection:
                        logger.info(f"Created collection '{name}'")
                    else:
                        logger.info(f"Using collection '{name}'")

                await store.add_chunks(batch, vectors)
                report.inserted_total += len(batch)
            except Exception as e:
                raise IngestionError(str(e), batch_number=number, collection=name) from e

        if not created:
            # Nothing survived filtering; leave an empty collection so queries return no hits
            await backend.create_collection(name, metadata=self._collection_metadata(options))
            logger.warning(f"No chunks inserted into '{name}'")

        store.last_build = report
        logger.info(
            f"Inserted {report.inserted_total}/{report.input_count} chunks into '{name}' "
            f"in {report.batches_total - report.batches_skipped} batches "
            f"({report.empty_content_filtered} empty, {report.empty_vector_filtered} dead vectors)"
        )
        return store

    async def _reset(self, backend: VectorStoreBackend, name: str) -> None:
        try:
            await backend.delete_collection(name)
            logger.info(f"Deleted existing collection '{name}'")
        except CollectionNotFoundError:
            logger.info(f"Collection '{name}' does not exist, nothing to reset")
        except Exception as e:
            raise IngestionError(f"Could not reset collection: {e}", collection=name) from e

    async def _embed_batch(
        self,
        batch: list[Chunk],
        embedding: BaseEmbedding,
        options: VectorStoreOptions,
    ) -> tuple[list[Chunk], list[list[float]], int]:
        """Embed a batch in sub-batches and drop chunks with unusable vectors."""
        size = options.embed_sub_batch_size
        sub_batches = [batch[i:i + size] for i in range(0, len(batch), size)]
        semaphore = asyncio.Semaphore(options.embed_concurrency)

        async def _embed(sub_batch: list[Chunk]) -> list[Any]:
            async with semaphore:
                return await with_timeout(
                    embedding.embed_documents([chunk.content for chunk in sub_batch]),
                    options.timeout,
                    "embed_documents",
                )

        tasks = [asyncio.create_task(_embed(sub_batch)) for sub_batch in sub_batches]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # One sub-batch failed; stop its siblings before the batch is reported
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        kept_chunks: list[Chunk] = []
        kept_vectors: list[list[float]] = []
        dead = 0
        for sub_batch, vectors in zip(sub_batches, results):
            vectors = list(vectors or [])
            for i, chunk in enumerate(sub_batch):
                vector = coerce_vector(vectors[i]) if i < len(vectors) else None
                if vector is None:
                    dead += 1
                    continue
                kept_chunks.append(chunk)
                kept_vectors.append(vector)

        if dead:
            logger.warning(f"Dropped {dead} chunks with empty or malformed vectors")
        return kept_chunks, kept_vectors, dead

    @staticmethod
    def _collection_metadata(options: VectorStoreOptions) -> dict[str, Any]:
        return {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "batch_size": options.batch_size,
        }

    def connect_to_existing(
        self,
        embedding: BaseEmbedding,
        options: Optional[VectorStoreOptions] = None,
        **overrides: Any,
    ) -> VectorStore:
        """Attach to a collection without indexing.

        Only the configuration is checked here; a missing collection shows
        up on the first query.

        Raises:
            ConfigurationError: If the options are unusable
        """
        options = self._resolve(options, overrides)
        if not options.collection_name.strip():
            raise ConfigurationError("collection_name must not be empty", operation="connect")

        backend = self.get_backend(options)
        logger.info(f"Connected to collection '{options.collection_name}'")
        return VectorStore(backend, embedding, options.collection_name, timeout=options.timeout)

    async def clean_collection(
        self,
        options: Optional[VectorStoreOptions] = None,
        **overrides: Any,
    ) -> bool:
        """Delete a collection. A collection that does not exist counts as cleaned."""
        options = self._resolve(options, overrides)
        name = options.collection_name
        try:
            await self.get_backend(options).delete_collection(name)
            logger.info(f"Deleted collection '{name}'")
            return True
        except CollectionNotFoundError:
            logger.info(f"Collection '{name}' does not exist, nothing to clean")
            return True
        except Exception as e:
            logger.error(f"Failed to delete collection '{name}': {e}")
            return False

    async def list_collections(
        self,
        options: Optional[VectorStoreOptions] = None,
        **overrides: Any,
    ) -> list[CollectionInfo]:
        options = self._resolve(options, overrides)
        try:
            return await self.get_backend(options).list_collections()
        except Exception as e:
            logger.error(f"Failed to list collections: {e}")
            return []

    async def validate_integrity(self, store: VectorStore, expected_count: int) -> StoreIntegrityReport:
        """Query the collection once and compare its item count."""
        actual_count = None
        test_query_success = False
        errors = []

        try:
            actual_count = await store.count()
        except Exception as e:
            errors.append(f"count failed: {e}")

        try:
            await store.similarity_search("test", k=1)
            test_query_success = True
        except Exception as e:
            errors.append(f"test query failed: {e}")

        count_matches = actual_count == expected_count
        report = StoreIntegrityReport(
            is_valid=count_matches and test_query_success,
            expected_count=expected_count,
            actual_count=actual_count,
            test_query_success=test_query_success,
            count_matches=count_matches,
            error="; ".join(errors) or None,
        )

        if report.is_valid:
            logger.info(f"Integrity check passed for '{store.collection_name}' ({actual_count} items)")
        else:
            logger.warning(
                f"Integrity check failed for '{store.collection_name}': expected {expected_count}, "
                f"found {actual_count}, test query {'ok' if test_query_success else 'failed'}"
            )
        return report
