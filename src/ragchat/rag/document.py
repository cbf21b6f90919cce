"""Document and Chunk data structures for RAG."""

from typing import Any

from pydantic import BaseModel, Field


class Document(BaseModel):
    """A document loaded from the knowledge base.

    Attributes:
        id: Unique identifier for the document
        content: The text content of the document
        metadata: Metadata about the document; ``source`` points at the file
    """

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def source(self) -> str:
        return str(self.metadata.get("source") or "unknown")

    def __repr__(self) -> str:
        content_preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Document(id={self.id!r}, content={content_preview!r})"


class Chunk(Document):
    """A bounded slice of a document, the unit of embedding and retrieval.

    Attributes:
        document_id: ID of the parent document
        start_index: Start character index in the parent document
        end_index: End character index in the parent document
    """

    document_id: str = ""
    start_index: int = 0
    end_index: int = 0

    def __repr__(self) -> str:
        content_preview = self.content[:30] + "..." if len(self.content) > 30 else self.content
        return f"Chunk(id={self.id!r}, doc_id={self.document_id!r}, content={content_preview!r})"


class SearchResult(BaseModel):
    """A similarity search hit.

    Attributes:
        chunk: The matching chunk
        score: Similarity score (higher is better)
    """

    chunk: Chunk
    score: float

    def __repr__(self) -> str:
        return f"SearchResult(chunk_id={self.chunk.id!r}, score={self.score:.4f})"
