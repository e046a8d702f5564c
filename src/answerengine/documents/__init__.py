"""Document content store and upload processing."""

from .processor import DocumentAnalyzer, DocumentProcessor, IngestionError, UnsupportedFileTypeError
from .store import ChromaDocumentStore, DocumentStore

__all__ = [
    "ChromaDocumentStore",
    "DocumentAnalyzer",
    "DocumentProcessor",
    "DocumentStore",
    "IngestionError",
    "UnsupportedFileTypeError",
]
