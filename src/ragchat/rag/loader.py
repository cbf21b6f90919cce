"""Directory loading of knowledge-base files."""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from ragchat.core.exceptions import ConfigurationError

from .base import BaseFileLoader
from .document import Document

logger = logging.getLogger(__name__)

LoaderFactory = Callable[[Path], BaseFileLoader]


class TextFileLoader(BaseFileLoader):
    """Load a plain-text or markdown file as one document."""

    def __init__(self, path: str | Path, encoding: str = "utf-8"):
        super().__init__(path)
        self.encoding = encoding

    def load(self) -> Document:
        content = self.path.read_text(encoding=self.encoding)
        return Document(
            id=str(self.path),
            content=content,
            metadata={"source": str(self.path)},
        )


class PDFFileLoader(BaseFileLoader):
    """Load a PDF file as one document, pages joined by blank lines."""

    def load(self) -> Document:
        try:
            import pypdf
        except ImportError:
            raise ImportError(
                "PDF loading requires 'pypdf'. "
                "Install it with: pip install pypdf"
            )

        reader = pypdf.PdfReader(str(self.path))
        pages = [page.extract_text() or "" for page in reader.pages]
        return Document(
            id=str(self.path),
            content="\n\n".join(pages),
            metadata={
                "source": str(self.path),
                "pdf": {"total_pages": len(pages)},
            },
        )


class LoadFailure(BaseModel):
    """A file that could not be parsed."""
    path: str
    error: str


class DocumentLoader:
    """Load every supported file under a knowledge directory.

    Files are dispatched by extension to a loader factory; unsupported
    extensions are skipped. A file that fails to parse is recorded in
    ``failures`` and does not stop the walk.
    """

    def __init__(self, knowledge_dir: str | Path = "knowledge"):
        self.knowledge_dir = Path(knowledge_dir)
        self.supported_formats: dict[str, LoaderFactory] = {
            ".pdf": PDFFileLoader,
            ".txt": TextFileLoader,
            ".md": TextFileLoader,
        }
        self.failures: list[LoadFailure] = []

    def add_format(self, extension: str, loader_factory: LoaderFactory) -> None:
        """Register a loader for another file extension.

        Args:
            extension: File extension, with or without the leading dot
            loader_factory: Callable building a loader from a file path
        """
        extension = extension.lower()
        if not extension.startswith("."):
            extension = f".{extension}"
        self.supported_formats[extension] = loader_factory

    async def load_documents(self, root_dir: Optional[str | Path] = None) -> list[Document]:
        """Load all documents below ``root_dir`` (the knowledge dir by default).

        Returns:
            One document per successfully parsed file, in path order

        Raises:
            ConfigurationError: If the directory does not exist
        """
        root = Path(root_dir) if root_dir is not None else self.knowledge_dir
        if not root.is_dir():
            raise ConfigurationError(
                f"Knowledge directory not found: {root}", operation="load_documents"
            )

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_sync, root)

    def _load_sync(self, root: Path) -> list[Document]:
        documents: list[Document] = []
        failures: list[LoadFailure] = []

        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            factory = self.supported_formats.get(path.suffix.lower())
            if factory is None:
                logger.debug(f"Skipping unsupported file: {path}")
                continue

            try:
                documents.append(factory(path).load())
            except Exception as e:
                logger.warning(f"Failed to load {path}: {e}")
                failures.append(LoadFailure(path=str(path), error=str(e)))

        self.failures = failures
        logger.info(
            f"Loaded {len(documents)} documents from {root}"
            + (f" ({len(failures)} failed)" if failures else "")
        )
        return documents
