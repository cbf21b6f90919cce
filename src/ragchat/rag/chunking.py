"""Document chunking."""

from typing import Optional

from .base import BaseChunker
from .document import Chunk, Document


class RecursiveChunker(BaseChunker):
    """Recursively chunk documents using progressively finer separators.

    The text is first cut into pieces no longer than
    ``chunk_size - overlap``, trying paragraph breaks, then line breaks,
    sentence ends, spaces and finally single characters. Pieces are then
    packed greedily into windows of at most ``chunk_size`` characters; every
    window after the first starts with the last ``overlap`` characters of
    the previous one.
    """

    DEFAULT_SEPARATORS = ["\n\n", "\n", "。", ". ", " ", ""]

    def __init__(
        self,
        chunk_size: int = 800,
        overlap: int = 200,
        separators: Optional[list[str]] = None,
    ):
        """Initialize the recursive chunker.

        Args:
            chunk_size: Maximum characters per chunk
            overlap: Number of characters shared by adjacent chunks
            separators: Separators to try, coarsest first
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("Overlap must be less than chunk_size")

        self.chunk_size = chunk_size
        self.overlap = overlap
        self.separators = separators if separators is not None else self.DEFAULT_SEPARATORS

    def chunk(self, document: Document) -> list[Chunk]:
        """Split document recursively."""
        pieces = self.split_text(document.content)

        chunks: list[Chunk] = []
        window = ""
        window_start = 0

        for piece in pieces:
            if window and len(window) + len(piece) > self.chunk_size:
                chunks.append(self._create_chunk(document, window, window_start, len(chunks)))
                tail = window[-self.overlap:] if self.overlap else ""
                window_start += len(window) - len(tail)
                window = tail
            window += piece

        if window:
            chunks.append(self._create_chunk(document, window, window_start, len(chunks)))

        return chunks

    def split_text(self, text: str) -> list[str]:
        """Cut text into pieces that concatenate back to ``text``."""
        return self._split(text, self.separators, self.chunk_size - self.overlap)

    def _split(self, text: str, separators: list[str], limit: int) -> list[str]:
        if not text:
            return []
        if len(text) <= limit:
            return [text]

        for i, separator in enumerate(separators):
            if separator == "":
                break
            if separator not in text:
                continue

            parts = text.split(separator)
            # Keep the separator attached to the piece it ends
            pieces = [p + separator for p in parts[:-1]] + [parts[-1]]

            result: list[str] = []
            for piece in pieces:
                if not piece:
                    continue
                if len(piece) <= limit:
                    result.append(piece)
                else:
                    result.extend(self._split(piece, separators[i + 1:], limit))
            return result

        # No separator left, fall back to fixed-size windows
        return [text[i:i + limit] for i in range(0, len(text), limit)]

    def _create_chunk(self, document: Document, content: str, start: int, index: int) -> Chunk:
        return Chunk(
            id=f"{document.id}_chunk_{index}",
            document_id=document.id,
            content=content,
            metadata={
                **document.metadata,
                "chunk_index": index,
            },
            start_index=start,
            end_index=start + len(content),
        )
