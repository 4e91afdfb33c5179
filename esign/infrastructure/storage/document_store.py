"""
Document Store

Blob storage for source documents, sealed PDFs and audit certificates.
Paths are opaque strings returned by ``put`` and accepted by ``get``.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from esign.config.settings import StorageSettings, get_settings
from esign.utils.errors import DocumentNotFoundError
from esign.utils.hashing import sha256_hex

logger = logging.getLogger(__name__)


def _content_key(data: bytes, extension: str) -> str:
    digest = sha256_hex(data)
    return f"{digest[:2]}/{digest}{extension}"


def _normalize_extension(file_name: Optional[str]) -> str:
    if not file_name:
        return ".pdf"
    suffix = Path(file_name).suffix.lower()
    return suffix or ".pdf"


class DocumentStore(ABC):
    """Abstract document store."""

    @abstractmethod
    def get(self, path: str) -> bytes:
        """
        Fetch a stored document.

        Raises:
            DocumentNotFoundError: nothing is stored at ``path``
        """
        pass

    @abstractmethod
    def put(self, data: bytes, file_name: Optional[str] = None) -> str:
        """Store ``data`` and return its path."""
        pass

    def exists(self, path: str) -> bool:
        try:
            self.get(path)
        except DocumentNotFoundError:
            return False
        return True


# =============================================================================
# Local Filesystem
# =============================================================================

class LocalDocumentStore(DocumentStore):
    """
    Content-addressed files under a root directory.

    Identical bytes map to the same path, so storing a document twice is
    harmless.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if self.root.resolve() not in resolved.parents:
            raise DocumentNotFoundError(details={"path": path})
        return resolved

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise DocumentNotFoundError(details={"path": path})
        return target.read_bytes()

    def put(self, data: bytes, file_name: Optional[str] = None) -> str:
        key = _content_key(data, _normalize_extension(file_name))
        target = self.root / key
        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_suffix(target.suffix + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, target)
            logger.debug(f"Stored document {key} ({len(data)} bytes)")
        return key


# =============================================================================
# In-Memory
# =============================================================================

class InMemoryDocumentStore(DocumentStore):
    """Process-local store for development and tests."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> bytes:
        with self._lock:
            if path not in self._blobs:
                raise DocumentNotFoundError(details={"path": path})
            return self._blobs[path]

    def put(self, data: bytes, file_name: Optional[str] = None) -> str:
        key = _content_key(data, _normalize_extension(file_name))
        with self._lock:
            self._blobs[key] = bytes(data)
        return key

    def __len__(self) -> int:
        return len(self._blobs)


# =============================================================================
# S3
# =============================================================================

class S3DocumentStore(DocumentStore):
    """Content-addressed objects in an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = "signatures",
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client or boto3.client("s3", region_name=region)

    def _object_key(self, path: str) -> str:
        return f"{self.prefix}/{path}" if self.prefix else path

    def get(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._object_key(path))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise DocumentNotFoundError(details={"path": path})
            raise
        return response["Body"].read()

    def put(self, data: bytes, file_name: Optional[str] = None) -> str:
        extension = _normalize_extension(file_name)
        key = _content_key(data, extension)
        content_type = "application/pdf" if extension == ".pdf" else "application/octet-stream"
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise
        return key


# =============================================================================
# Factory
# =============================================================================

_document_store: Optional[DocumentStore] = None


def create_document_store(settings: StorageSettings) -> DocumentStore:
    """Build the store selected by ``settings.backend``."""
    backend = settings.backend.lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "s3":
        return S3DocumentStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            prefix=settings.s3_prefix,
        )
    if backend == "local":
        return LocalDocumentStore(settings.local_root)
    raise ValueError(f"Unknown document store backend: {settings.backend}")


def get_document_store() -> DocumentStore:
    """Get or create the configured document store singleton."""
    global _document_store
    if _document_store is None:
        _document_store = create_document_store(get_settings().storage)
    return _document_store
