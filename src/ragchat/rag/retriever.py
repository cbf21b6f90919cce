"""Retriever implementations."""

import logging
from typing import TYPE_CHECKING, Any, Optional

from ragchat.core.exceptions import RagChatError, RetrievalError

from .base import BaseRetriever
from .document import Chunk, SearchResult

if TYPE_CHECKING:
    from .vectorstore import VectorStore

logger = logging.getLogger(__name__)


class VectorRetriever(BaseRetriever):
    """Vector similarity retriever.

    Retrieves chunks from a store handle by embedding similarity. Any
    failure (embedding, timeout, missing collection) surfaces as
    ``RetrievalError``.
    """

    def __init__(self, store: "VectorStore", k: int = 4):
        """Initialize the vector retriever.

        Args:
            store: Store handle to search
            k: Default number of chunks per query
        """
        self.store = store
        self.k = k

    async def search(
        self,
        query: str,
        k: Optional[int] = None,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Retrieve chunks together with their similarity scores."""
        k = k or self.k
        try:
            results = await self.store.similarity_search_with_score(query, k, filter)
        except RagChatError as e:
            raise RetrievalError(e.message) from e
        except Exception as e:
            raise RetrievalError(str(e)) from e

        logger.info(f"Retrieved {len(results)} chunks (k={k}) from '{self.store.collection_name}'")
        return results

    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[Chunk]:
        results = await self.search(query, k, filter)
        return [result.chunk for result in results]
