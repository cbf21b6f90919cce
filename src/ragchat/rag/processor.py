"""Chunking, metadata sanitization and processing diagnostics."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from .chunking import RecursiveChunker
from .document import Chunk, Document

logger = logging.getLogger(__name__)

_PRIMITIVES = (str, int, float, bool)


class ProcessingIntegrityReport(BaseModel):
    """Character accounting between raw documents and their chunks.

    ``content_retention_rate`` is a percentage and exceeds 100 when chunk
    overlap duplicates text; it is a diagnostic, not a gate.
    """
    original_docs_count: int
    processed_chunks_count: int
    original_total_chars: int
    processed_total_chars: int
    content_retention_rate: float
    average_chunks_per_doc: float


def sanitize_value(value: Any) -> Any:
    """Project a metadata value onto str/int/float/bool/None."""
    if value is None or isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, (dict, list, tuple, set)):
        if isinstance(value, set):
            value = sorted(value, key=str)
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


class DocumentProcessor:
    """Split documents into overlapping chunks and clean their metadata."""

    def __init__(
        self,
        chunk_size: int = 800,
        chunk_overlap: int = 200,
        separators: Optional[list[str]] = None,
    ):
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.chunker = RecursiveChunker(
            chunk_size=chunk_size,
            overlap=chunk_overlap,
            separators=separators,
        )

    def split_documents(self, documents: list[Document]) -> list[Chunk]:
        """Split every document into chunks, preserving document order."""
        chunks: list[Chunk] = []
        for document in documents:
            chunks.extend(self.chunker.chunk(document))
        logger.info(f"Split {len(documents)} documents into {len(chunks)} chunks")
        return chunks

    def sanitize_metadata(self, chunks: list[Chunk]) -> list[Chunk]:
        """Keep only primitive metadata values.

        Containers are JSON-encoded, other objects are stringified. Every
        chunk gets ``source`` (default ``"unknown"``), ``chunk_size`` and a
        ``processed_at`` timestamp; an existing timestamp is kept, so running
        this twice gives the same result as running it once.
        """
        processed_at = datetime.now(timezone.utc).isoformat()
        sanitized = []

        for chunk in chunks:
            metadata = {key: sanitize_value(value) for key, value in chunk.metadata.items()}
            metadata["source"] = metadata.get("source") or "unknown"
            metadata["chunk_size"] = len(chunk.content)
            metadata.setdefault("processed_at", processed_at)
            sanitized.append(chunk.model_copy(update={"metadata": metadata}))

        return sanitized

    def validate_processing_integrity(
        self,
        original: list[Document],
        processed: list[Chunk],
    ) -> ProcessingIntegrityReport:
        """Compare character totals before and after chunking."""
        original_chars = sum(len(doc.content) for doc in original)
        processed_chars = sum(len(chunk.content) for chunk in processed)

        retention = (processed_chars / original_chars * 100) if original_chars else 0.0
        average = (len(processed) / len(original)) if original else 0.0

        return ProcessingIntegrityReport(
            original_docs_count=len(original),
            processed_chunks_count=len(processed),
            original_total_chars=original_chars,
            processed_total_chars=processed_chars,
            content_retention_rate=round(retention, 2),
            average_chunks_per_doc=round(average, 2),
        )
