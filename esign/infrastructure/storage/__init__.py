"""Storage infrastructure module."""

from esign.infrastructure.storage.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    LocalDocumentStore,
    S3DocumentStore,
    create_document_store,
    get_document_store,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "LocalDocumentStore",
    "S3DocumentStore",
    "create_document_store",
    "get_document_store",
]
