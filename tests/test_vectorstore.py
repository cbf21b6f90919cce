"""Tests for vector store backends, the factory, retrievers and the builder."""

import asyncio
import logging
from pathlib import Path

import pytest

from conftest import RecordingEmbedding

from ragchat.core.exceptions import (
    CollectionNotFoundError,
    ConfigurationError,
    IngestionError,
    RetrievalError,
)
from ragchat.rag import (
    DEFAULT_PROFILE,
    LARGE_FILE_PROFILE,
    Chunk,
    FakeEmbedding,
    MemoryBackend,
    RetrieverBuilder,
    VectorStoreFactory,
    VectorStoreOptions,
)
from ragchat.rag.factory import coerce_vector


def make_chunks(*contents: str) -> list[Chunk]:
    return [
        Chunk(id=f"c{i}", document_id="doc", content=content, metadata={"source": f"s{i}.txt"})
        for i, content in enumerate(contents)
    ]


class OneHotEmbedding(FakeEmbedding):
    """Maps each known word to its own axis."""

    def __init__(self, vocabulary: list[str]):
        super().__init__(dimension=len(vocabulary))
        self.vocabulary = vocabulary

    def _embed(self, text: str) -> list[float]:
        return [1.0 if word == text else 0.0 for word in self.vocabulary]


class SlowEmbedding(FakeEmbedding):
    """Fails at once on ``fail_on`` and takes a while on everything else."""

    def __init__(self, fail_on: str):
        super().__init__()
        self.fail_on = fail_on
        self.finished: list[str] = []

    async def embed_documents(self, texts):
        if any(self.fail_on in text for text in texts):
            raise RuntimeError("embedding service unavailable")
        await asyncio.sleep(0.1)
        self.finished.extend(texts)
        return [self._embed(text) for text in texts]


class BrokenBackend(MemoryBackend):
    """Backend whose administrative calls fail."""

    async def delete_collection(self, name):
        raise RuntimeError("server unreachable")

    async def list_collections(self):
        raise RuntimeError("server unreachable")


class TestMemoryBackend:
    """Tests for MemoryBackend."""

    @pytest.mark.asyncio
    async def test_add_and_search(self):
        """Test that search ranks the closest vector first."""
        backend = MemoryBackend()
        await backend.create_collection("col")
        chunks = make_chunks("first", "second")
        await backend.add("col", chunks, [[1.0, 0.0], [0.0, 1.0]])

        results = await backend.search("col", [0.9, 0.1], k=2)

        assert [r.chunk.id for r in results] == ["c0", "c1"]
        assert results[0].score > results[1].score

    @pytest.mark.asyncio
    async def test_filter(self):
        """Test metadata filtering."""
        backend = MemoryBackend()
        await backend.create_collection("col")
        await backend.add("col", make_chunks("a", "b"), [[1.0, 0.0], [1.0, 0.0]])

        results = await backend.search("col", [1.0, 0.0], k=5, filter={"source": "s1.txt"})

        assert [r.chunk.id for r in results] == ["c1"]

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self):
        """Test that creating twice keeps the data."""
        backend = MemoryBackend()
        await backend.create_collection("col")
        await backend.add("col", make_chunks("a"), [[1.0]])
        await backend.create_collection("col")

        info = await backend.get_collection_info("col")
        assert info.count == 1
        assert info.metadata["hnsw:space"] == "cosine"

    @pytest.mark.asyncio
    async def test_missing_collection(self):
        """Test not-found errors."""
        backend = MemoryBackend()
        with pytest.raises(CollectionNotFoundError):
            await backend.delete_collection("nope")
        with pytest.raises(CollectionNotFoundError):
            await backend.search("nope", [1.0])

    @pytest.mark.asyncio
    async def test_list_collections(self):
        backend = MemoryBackend()
        await backend.create_collection("one")
        await backend.create_collection("two")
        names = [info.name for info in await backend.list_collections()]
        assert names == ["one", "two"]


class TestCoerceVector:
    """Tests for vector validation."""

    def test_valid(self):
        assert coerce_vector([1, 2.5]) == [1.0, 2.5]
        assert coerce_vector((0.1,)) == [0.1]

    def test_invalid(self):
        for vector in (None, [], [1.0, "a"], [True, 1.0], [float("nan")], [float("inf")], "abc"):
            assert coerce_vector(vector) is None

    def test_array_like(self):
        class ArrayLike:
            def tolist(self):
                return [0.5, 0.5]

        assert coerce_vector(ArrayLike()) == [0.5, 0.5]


class TestVectorStoreFactory:
    """Tests for VectorStoreFactory.create_store and administration."""

    @pytest.fixture
    def factory(self):
        return VectorStoreFactory(MemoryBackend())

    @pytest.mark.asyncio
    async def test_empty_content_never_reaches_embedder(self, factory):
        """Test that empty chunks are filtered before embedding."""
        embedding = RecordingEmbedding()
        chunks = make_chunks("", "   \n", "hello world")

        store = await factory.create_store(chunks, embedding, collection_name="col")

        assert embedding.embedded == ["hello world"]
        assert store.last_build.empty_content_filtered == 2
        assert store.last_build.inserted_total == 1
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_dead_vectors_are_excluded(self, factory):
        """Test that chunks with empty vectors are not inserted."""
        embedding = RecordingEmbedding(dead_marker="DEAD")
        chunks = make_chunks("alpha", "DEAD beta", "gamma", "", "DEAD delta")

        store = await factory.create_store(chunks, embedding, collection_name="col", batch_size=2)
        report = store.last_build

        assert report.input_count == 5
        assert report.empty_content_filtered == 1
        assert report.empty_vector_filtered == 2
        assert report.inserted_total == 2
        assert report.inserted_total + report.filtered_total == report.input_count
        assert await store.count() == 2

        hits = await store.similarity_search("gamma", k=5)
        assert "DEAD beta" not in [hit.content for hit in hits]

    @pytest.mark.asyncio
    async def test_batches_and_sub_batches(self, factory):
        """Test batch accounting and sub-batch embedding calls."""
        embedding = RecordingEmbedding()
        chunks = make_chunks("a1", "b2", "c3", "d4", "e5")

        store = await factory.create_store(
            chunks, embedding, collection_name="col", batch_size=2, embed_sub_batch_size=1
        )

        assert store.last_build.batches_total == 3
        assert embedding.document_calls == 5
        assert embedding.embedded == ["a1", "b2", "c3", "d4", "e5"]

    @pytest.mark.asyncio
    async def test_batch_of_dead_vectors_is_skipped(self, factory):
        """Test that a batch left empty after filtering is skipped."""
        embedding = RecordingEmbedding(dead_marker="DEAD")
        chunks = make_chunks("DEAD one", "DEAD two", "three")

        store = await factory.create_store(chunks, embedding, collection_name="col", batch_size=2)

        assert store.last_build.batches_skipped == 1
        assert store.last_build.inserted_total == 1

    @pytest.mark.asyncio
    async def test_concurrent_sub_batches_keep_order(self, factory):
        """Test that parallel sub-batches pair each chunk with its own vector."""
        words = ["apple", "banana", "cherry", "durian", "elder", "fig"]
        store = await factory.create_store(
            make_chunks(*words),
            OneHotEmbedding(words),
            collection_name="col",
            embed_sub_batch_size=1,
            embed_concurrency=4,
        )

        for word in words:
            [hit] = await store.similarity_search(word, k=1)
            assert hit.content == word

    @pytest.mark.asyncio
    async def test_failed_sub_batch_cancels_siblings(self, factory):
        """Test that a failing sub-batch stops the ones still embedding."""
        embedding = SlowEmbedding(fail_on="boom")

        with pytest.raises(IngestionError) as exc_info:
            await factory.create_store(
                make_chunks("boom", "slow", "slower"),
                embedding,
                collection_name="col",
                embed_sub_batch_size=1,
                embed_concurrency=3,
            )
        await asyncio.sleep(0.3)

        assert exc_info.value.batch_number == 1
        assert embedding.finished == []

    @pytest.mark.asyncio
    async def test_reset_nonexistent_collection(self, factory):
        """Test that resetting a missing collection succeeds."""
        store = await factory.create_store(
            make_chunks("hello"), FakeEmbedding(), collection_name="fresh", reset_collection=True
        )
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_reset_replaces_existing(self, factory):
        """Test that a reset build drops previous content."""
        embedding = FakeEmbedding()
        await factory.create_store(make_chunks("one", "two", "three"), embedding, collection_name="col")
        store = await factory.create_store(make_chunks("four"), embedding, collection_name="col")

        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_no_reset_appends(self, factory, caplog):
        """Test that rebuilding the same chunks without reset stores them again."""
        embedding = FakeEmbedding()
        chunks = make_chunks("one", "two", "three")
        await factory.create_store(chunks, embedding, collection_name="col")

        with caplog.at_level(logging.INFO, logger="ragchat.rag.factory"):
            store = await factory.create_store(chunks, embedding, collection_name="col", reset_collection=False)

        assert await store.count() == 6
        assert store.last_build.inserted_total == 3
        assert "Using collection 'col'" in caplog.text
        assert "Created collection" not in caplog.text
        hits = await store.similarity_search("one", k=6)
        assert len({hit.id for hit in hits}) == 6

    @pytest.mark.asyncio
    async def test_failed_batch_aborts_without_rollback(self, factory):
        """Test that a failing batch raises with its number and keeps earlier batches."""
        embedding = RecordingEmbedding(fail_on="boom")
        chunks = make_chunks("one", "two", "boom", "four")

        with pytest.raises(IngestionError) as exc_info:
            await factory.create_store(chunks, embedding, collection_name="col", batch_size=2)

        assert exc_info.value.batch_number == 2
        assert exc_info.value.collection == "col"
        assert "Batch 2 failed" in str(exc_info.value)
        info = await factory.get_backend(VectorStoreOptions()).get_collection_info("col")
        assert info.count == 2

    @pytest.mark.asyncio
    async def test_without_pre_embed_filter(self, factory):
        """Test that the store embeds at insert time when pre-filtering is off."""
        embedding = RecordingEmbedding()
        store = await factory.create_store(
            make_chunks("alpha", "beta"), embedding, collection_name="col", pre_embed_filter=False
        )

        assert store.last_build.inserted_total == 2
        assert embedding.embedded == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_nothing_to_insert_leaves_empty_collection(self, factory):
        """Test that an all-empty build is still queryable."""
        store = await factory.create_store(make_chunks("", " "), FakeEmbedding(), collection_name="col")

        assert store.last_build.inserted_total == 0
        assert await store.count() == 0
        assert await store.similarity_search("anything") == []

    @pytest.mark.asyncio
    async def test_clean_collection(self, factory):
        """Test that cleaning succeeds whether or not the collection exists."""
        await factory.create_store(make_chunks("x"), FakeEmbedding(), collection_name="col")

        assert await factory.clean_collection(collection_name="col") is True
        assert await factory.clean_collection(collection_name="col") is True
        assert await factory.list_collections() == []

    @pytest.mark.asyncio
    async def test_admin_failures_are_reported(self):
        """Test that backend failures turn into False / empty results."""
        factory = VectorStoreFactory(BrokenBackend())
        assert await factory.clean_collection(collection_name="col") is False
        assert await factory.list_collections() == []

    @pytest.mark.asyncio
    async def test_list_collections(self, factory):
        embedding = FakeEmbedding()
        await factory.create_store(make_chunks("x"), embedding, collection_name="one")
        await factory.create_store(make_chunks("y"), embedding, collection_name="two")

        names = sorted(info.name for info in await factory.list_collections())
        assert names == ["one", "two"]

    @pytest.mark.asyncio
    async def test_validate_integrity(self, factory):
        """Test count comparison and test query."""
        store = await factory.create_store(make_chunks("a", "b"), FakeEmbedding(), collection_name="col")

        ok = await factory.validate_integrity(store, 2)
        assert ok.is_valid
        assert ok.count_matches
        assert ok.test_query_success

        mismatch = await factory.validate_integrity(store, 3)
        assert not mismatch.is_valid
        assert not mismatch.count_matches
        assert mismatch.actual_count == 2

    @pytest.mark.asyncio
    async def test_validate_integrity_missing_collection(self, factory):
        """Test that a missing collection is reported, not raised."""
        store = factory.connect_to_existing(FakeEmbedding(), collection_name="ghost")
        report = await factory.validate_integrity(store, 0)

        assert not report.is_valid
        assert not report.test_query_success
        assert "ghost" in report.error

    def test_connect_requires_collection_name(self, factory):
        with pytest.raises(ConfigurationError):
            factory.connect_to_existing(FakeEmbedding(), collection_name="  ")

    def test_default_backend_validates_url(self):
        """Test that a Chroma backend is created per URL and bad URLs are rejected."""
        factory = VectorStoreFactory()
        backend = factory.get_backend(VectorStoreOptions(url="http://chroma:9000"))
        assert backend is factory.get_backend(VectorStoreOptions(url="http://chroma:9000"))

        with pytest.raises(ConfigurationError):
            factory.connect_to_existing(FakeEmbedding(), url="not a url")


class TestVectorRetriever:
    """Tests for VectorRetriever."""

    @pytest.mark.asyncio
    async def test_retrieve_top_k(self):
        factory = VectorStoreFactory(MemoryBackend())
        store = await factory.create_store(
            make_chunks("python code", "java code", "boiled pasta"), FakeEmbedding(dimension=1024), collection_name="col"
        )
        retriever = store.as_retriever(k=2)

        chunks = await retriever.retrieve("python")
        assert len(chunks) == 2
        assert chunks[0].content == "python code"

        assert len(await retriever.retrieve("python", k=1)) == 1

    @pytest.mark.asyncio
    async def test_search_returns_scores(self):
        factory = VectorStoreFactory(MemoryBackend())
        store = await factory.create_store(make_chunks("python code"), FakeEmbedding(), collection_name="col")

        [result] = await store.as_retriever().search("python code")
        assert result.score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_failure_is_retrieval_error(self):
        """Test that a missing collection surfaces as RetrievalError."""
        factory = VectorStoreFactory(MemoryBackend())
        retriever = factory.connect_to_existing(FakeEmbedding(), collection_name="ghost").as_retriever()

        with pytest.raises(RetrievalError) as exc_info:
            await retriever.retrieve("anything")
        assert "ghost" in str(exc_info.value)


class BrokenEmbedding(FakeEmbedding):
    async def embed_query(self, text):
        raise RuntimeError("invalid api key")


class TestRetrieverBuilder:
    """Tests for RetrieverBuilder."""

    @pytest.mark.asyncio
    async def test_build_concrete_scenario(self, knowledge_dir):
        """Test building from 100/5000/50 character files at 800/200."""
        builder = RetrieverBuilder.in_memory(FakeEmbedding(), knowledge_dir)
        retriever = await builder.build()

        report = builder.store.last_build
        assert report.input_count == 10
        assert report.inserted_total == 10
        assert await builder.store.count() == 10
        assert retriever.k == DEFAULT_PROFILE.k

    @pytest.mark.asyncio
    async def test_retrieves_relevant_source(self, python_knowledge_dir):
        builder = RetrieverBuilder.in_memory(FakeEmbedding(), python_knowledge_dir)
        retriever = await builder.build()

        chunks = await retriever.retrieve("Who created the Python programming language?")
        assert Path(chunks[0].source).name == "python.md"
        assert chunks[0].metadata["chunk_size"] == len(chunks[0].content)
        assert "processed_at" in chunks[0].metadata

    @pytest.mark.asyncio
    async def test_embedding_check_failure_aborts_build(self, tmp_path):
        """Test that a broken embedding fails fast before loading."""
        builder = RetrieverBuilder.in_memory(BrokenEmbedding(), tmp_path / "missing")

        assert await builder.test_embeddings() is False
        with pytest.raises(ConfigurationError) as exc_info:
            await builder.build()
        assert "Embedding" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_embedding_check_rejects_empty_vector(self):
        class EmptyEmbedding(FakeEmbedding):
            async def embed_query(self, text):
                return []

        builder = RetrieverBuilder(EmptyEmbedding(), factory=VectorStoreFactory(MemoryBackend()))
        assert await builder.test_embeddings() is False

    @pytest.mark.asyncio
    async def test_connect_reuses_existing_collection(self, python_knowledge_dir):
        """Test that connect mode sees what an earlier build wrote."""
        factory = VectorStoreFactory(MemoryBackend())
        builder = RetrieverBuilder.in_memory(FakeEmbedding(), python_knowledge_dir, factory=factory)
        await builder.build()

        other = RetrieverBuilder(FakeEmbedding(), knowledge_dir="unused", factory=factory)
        retriever = other.connect(k=1)

        [chunk] = await retriever.retrieve("pasta water")
        assert Path(chunk.source).name == "cooking.txt"

    def test_default_profile_is_large(self):
        builder = RetrieverBuilder(FakeEmbedding(), factory=VectorStoreFactory(MemoryBackend()))
        assert builder.processor.chunk_size == LARGE_FILE_PROFILE.chunk_size
        assert builder.processor.chunk_overlap == LARGE_FILE_PROFILE.chunk_overlap
        assert builder.k == LARGE_FILE_PROFILE.k

    def test_from_profile(self):
        builder = RetrieverBuilder.from_profile(FakeEmbedding(), "default")
        assert builder.processor.chunk_size == 800
        assert builder.k == 4

        with pytest.raises(ConfigurationError):
            RetrieverBuilder.from_profile(FakeEmbedding(), "huge")

    def test_invalid_overlap(self):
        with pytest.raises(ConfigurationError):
            RetrieverBuilder(FakeEmbedding(), chunk_size=100, chunk_overlap=100)
