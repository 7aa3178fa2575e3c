"""Blob store backends: in-memory and Cloudflare R2."""

from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from collabhub.config import CollabSettings
from collabhub.storage import InMemoryBlobStore, build_blob_store
from collabhub.storage.blob import BlobStoreError
from collabhub.storage.r2_client import R2BlobStore, R2Config

R2_ENV = {
    "R2_ENDPOINT_URL": "https://test.r2.cloudflarestorage.com",
    "R2_ACCESS_KEY_ID": "test_key_id",
    "R2_SECRET_ACCESS_KEY": "test_secret_key",
    "R2_BUCKET_NAME": "test-bucket",
}


def _client_error(operation):
    return ClientError({"Error": {"Code": "500", "Message": "Internal Error"}}, operation)


class TestInMemoryBlobStore:
    def test_put_get_delete(self):
        store = InMemoryBlobStore()

        ref = store.put(b"hello", folder="/project-documents/p1/", filename="a.txt")

        assert ref.id.startswith("project-documents/p1/")
        assert ref.id.endswith("-a.txt")
        assert ref.url == f"memory://blobs/{ref.id}"
        assert store.get(ref.id) == b"hello"
        assert ref.id in store

        store.delete(ref.id)
        store.delete(ref.id)
        assert len(store) == 0
        with pytest.raises(BlobStoreError):
            store.get(ref.id)


class TestR2Config:
    def test_from_env(self, monkeypatch):
        for key, value in R2_ENV.items():
            monkeypatch.setenv(key, value)
        monkeypatch.setenv("R2_PUBLIC_DOMAIN", "files.example.com")
        monkeypatch.delenv("R2_MAX_FILE_SIZE", raising=False)

        config = R2Config.from_env()

        assert config.bucket_name == "test-bucket"
        assert config.public_domain == "files.example.com"
        assert config.max_file_size == 10 * 1024 * 1024

    def test_from_env_missing_vars(self, monkeypatch):
        for key in R2_ENV:
            monkeypatch.delenv(key, raising=False)

        with pytest.raises(ValueError, match="R2 configuration required"):
            R2Config.from_env()


class TestR2BlobStore:
    @pytest.fixture
    def config(self):
        return R2Config(
            endpoint_url=R2_ENV["R2_ENDPOINT_URL"],
            access_key_id=R2_ENV["R2_ACCESS_KEY_ID"],
            secret_access_key=R2_ENV["R2_SECRET_ACCESS_KEY"],
            bucket_name=R2_ENV["R2_BUCKET_NAME"],
            max_file_size=16,
        )

    @pytest.fixture
    def client(self):
        return Mock()

    @pytest.fixture
    def store(self, config, client):
        return R2BlobStore(config, client=client)

    @patch("collabhub.storage.r2_client.boto3")
    def test_builds_s3_client_for_r2(self, mock_boto3, config):
        R2BlobStore(config)

        _, kwargs = mock_boto3.client.call_args
        assert mock_boto3.client.call_args[0] == ("s3",)
        assert kwargs["endpoint_url"] == config.endpoint_url
        assert kwargs["region_name"] == "auto"

    def test_put_uploads_with_checksum(self, store, client):
        ref = store.put(
            b"%PDF-1.4",
            folder="project-documents/p1",
            filename="plan.pdf",
            content_type="application/pdf",
        )

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "test-bucket"
        assert kwargs["Key"] == ref.id
        assert kwargs["Body"] == b"%PDF-1.4"
        assert kwargs["ContentType"] == "application/pdf"
        assert len(kwargs["Metadata"]["sha256"]) == 64
        assert ref.url == f"https://test.r2.cloudflarestorage.com/test-bucket/{ref.id}"

    def test_public_domain_url(self, config, client):
        config.public_domain = "files.example.com"
        store = R2BlobStore(config, client=client)

        ref = store.put(b"x", folder="docs")

        assert ref.url == f"https://files.example.com/{ref.id}"

    def test_oversized_upload_is_rejected(self, store, client):
        with pytest.raises(ValueError, match="exceeds maximum"):
            store.put(b"x" * 17, folder="docs")

        client.put_object.assert_not_called()

    def test_client_errors_become_blob_store_errors(self, store, client):
        client.put_object.side_effect = _client_error("PutObject")
        client.delete_object.side_effect = _client_error("DeleteObject")

        with pytest.raises(BlobStoreError):
            store.put(b"x", folder="docs")
        with pytest.raises(BlobStoreError):
            store.delete("docs/x", kind="raw")

    def test_delete_removes_object(self, store, client):
        store.delete("docs/x")

        client.delete_object.assert_called_once_with(Bucket="test-bucket", Key="docs/x")


class TestBuildBlobStore:
    def test_memory_backend(self):
        store = build_blob_store(CollabSettings(blob_backend="memory"))

        assert isinstance(store, InMemoryBlobStore)

    @patch("collabhub.storage.r2_client.boto3")
    def test_r2_backend(self, _mock_boto3, monkeypatch):
        for key, value in R2_ENV.items():
            monkeypatch.setenv(key, value)

        store = build_blob_store(CollabSettings(blob_backend="r2"))

        assert isinstance(store, R2BlobStore)
        assert store.config.bucket_name == "test-bucket"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown blob backend"):
            build_blob_store(CollabSettings(blob_backend="ftp"))
