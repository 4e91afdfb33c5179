"""Tests for document store backends."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from esign.config.settings import StorageSettings
from esign.infrastructure.storage import (
    InMemoryDocumentStore,
    LocalDocumentStore,
    S3DocumentStore,
    create_document_store,
)
from esign.utils.errors import DocumentNotFoundError
from esign.utils.hashing import sha256_hex


class TestLocalDocumentStore:
    """Test cases for LocalDocumentStore."""

    def test_put_and_get(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))

        path = store.put(b"%PDF-1.4 body", "Contract.PDF")

        assert path.endswith(".pdf")
        assert path.startswith(sha256_hex(b"%PDF-1.4 body")[:2] + "/")
        assert store.get(path) == b"%PDF-1.4 body"
        assert store.exists(path)

    def test_identical_content_shares_path(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))

        assert store.put(b"same", "a.pdf") == store.put(b"same", "b.pdf")

    def test_missing_document(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))

        with pytest.raises(DocumentNotFoundError):
            store.get("ab/missing.pdf")
        assert store.exists("ab/missing.pdf") is False

    def test_path_outside_root_rejected(self, tmp_path):
        root = tmp_path / "documents"
        (tmp_path / "secret.txt").write_bytes(b"secret")
        store = LocalDocumentStore(str(root))

        with pytest.raises(DocumentNotFoundError):
            store.get("../secret.txt")


class TestInMemoryDocumentStore:
    def test_put_and_get(self):
        store = InMemoryDocumentStore()

        path = store.put(b"data")

        assert store.get(path) == b"data"
        assert len(store) == 1

    def test_missing_document(self):
        with pytest.raises(DocumentNotFoundError):
            InMemoryDocumentStore().get("nope.pdf")


class TestS3DocumentStore:
    """Test cases for S3DocumentStore with a stubbed client."""

    def test_put_uses_prefix_and_content_type(self):
        client = MagicMock()
        store = S3DocumentStore("bucket", prefix="/signatures/", client=client)

        path = store.put(b"%PDF", "contract.pdf")

        client.put_object.assert_called_once_with(
            Bucket="bucket",
            Key=f"signatures/{path}",
            Body=b"%PDF",
            ContentType="application/pdf",
        )

    def test_get_reads_body(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"%PDF")}
        store = S3DocumentStore("bucket", client=client)

        assert store.get("ab/abc.pdf") == b"%PDF"
        client.get_object.assert_called_once_with(Bucket="bucket", Key="signatures/ab/abc.pdf")

    def test_missing_key(self):
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject"
        )
        store = S3DocumentStore("bucket", client=client)

        with pytest.raises(DocumentNotFoundError):
            store.get("ab/abc.pdf")

    def test_other_errors_propagate(self):
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "GetObject"
        )
        store = S3DocumentStore("bucket", client=client)

        with pytest.raises(ClientError):
            store.get("ab/abc.pdf")


class TestStoreFactory:
    def test_memory_backend(self):
        assert isinstance(create_document_store(StorageSettings(backend="memory")), InMemoryDocumentStore)

    def test_local_backend(self, tmp_path):
        store = create_document_store(StorageSettings(backend="local", local_root=str(tmp_path)))

        assert isinstance(store, LocalDocumentStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_document_store(StorageSettings(backend="ftp"))
