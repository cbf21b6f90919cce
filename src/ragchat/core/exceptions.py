"""
Error taxonomy for ingestion, retrieval and conversation turns.
"""


class RagChatError(Exception):
    """Base exception for ragchat errors."""

    def __init__(self, message: str, operation: str | None = None):
        self.message = message
        self.operation = operation
        super().__init__(self.message)


class ConfigurationError(RagChatError):
    """Raised when credentials, URLs or options are missing or invalid."""

    def __init__(self, message: str = "Invalid configuration", operation: str | None = None):
        super().__init__(message, operation=operation)


class IngestionError(RagChatError):
    """Raised when a batch fails to embed or insert during a build.

    Batches written before the failing one stay in the collection.
    """

    def __init__(
        self,
        message: str,
        batch_number: int | None = None,
        collection: str | None = None,
        operation: str | None = "ingest",
    ):
        self.batch_number = batch_number
        self.collection = collection
        if batch_number is not None:
            message = f"Batch {batch_number} failed: {message}"
        super().__init__(message, operation=operation)


class RetrievalError(RagChatError):
    """Raised when the retriever fails to answer a query."""

    def __init__(self, message: str):
        super().__init__(f"Retrieval failed: {message}", operation="retrieve")


class GenerationError(RagChatError):
    """Raised when the chat capability fails to produce a reply."""

    def __init__(self, message: str):
        super().__init__(f"Generation failed: {message}", operation="generate")


class CollectionNotFoundError(RagChatError):
    """Raised by a vector-store backend for an unknown collection."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Collection '{name}' does not exist")


class OperationTimeoutError(RagChatError):
    """Raised when a network call exceeds its time budget."""

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"'{operation}' timed out after {timeout:g}s", operation=operation)
