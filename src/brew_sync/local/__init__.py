"""Local storage collaborators: the record source and key-document store."""

from .documents import DocumentStore, FileDocumentStore
from .records import DirectoryRecordSource, LocalDocument, RecordSource

__all__ = [
    "DirectoryRecordSource",
    "DocumentStore",
    "FileDocumentStore",
    "LocalDocument",
    "RecordSource",
]
