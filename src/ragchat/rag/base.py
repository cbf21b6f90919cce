"""Base classes and abstract interfaces for RAG components."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .document import Chunk, Document


class BaseEmbedding(ABC):
    """Abstract base class for embedding models.

    Embedding models convert text into dense vector representations.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, one per input text
        """
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query.

        Args:
            text: Query text to embed

        Returns:
            Embedding vector
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass


class BaseRetriever(ABC):
    """Abstract base class for retrievers.

    Retrievers find relevant chunks for a given query.
    """

    @abstractmethod
    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        filter: Optional[dict[str, Any]] = None,
    ) -> list["Chunk"]:
        """Retrieve relevant chunks for a query.

        Args:
            query: Query string
            k: Number of results to return (retriever default if None)
            filter: Optional metadata filter

        Returns:
            Chunks ordered by decreasing similarity
        """
        pass


class BaseChunker(ABC):
    """Abstract base class for document chunkers.

    Chunkers split documents into smaller pieces for indexing.
    """

    @abstractmethod
    def chunk(self, document: "Document") -> list["Chunk"]:
        """Split a document into chunks.

        Args:
            document: Document to chunk

        Returns:
            List of chunks
        """
        pass


class BaseFileLoader(ABC):
    """Abstract base class for single-file loaders."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @abstractmethod
    def load(self) -> "Document":
        """Parse the file into one document.

        Raises:
            Any parsing or I/O error; the directory loader records it
            and moves on to the next file.
        """
        pass
