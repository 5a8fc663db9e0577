"""Tests for smelt_processor.storage.object_storage module."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from smelt_processor.storage.object_storage import (
    RESULT_CONTENT_TYPE,
    ObjectStorageClient,
    result_key,
    source_key,
)
from smelt_processor.utils.errors import StorageError


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestKeys:
    def test_source_key_uses_lowercased_extension(self):
        assert source_key("job1", "file1", "Meeting.M4A") == "job1/file1.m4a"

    def test_source_key_defaults_to_txt(self):
        assert source_key("job1", "file1", "pasted") == "job1/file1.txt"

    def test_result_key(self):
        assert result_key("job1", "file1") == "job1/results/file1.md"


class TestObjectStorageClientInit:
    """Tests for ObjectStorageClient initialization."""

    def test_init_with_explicit_params(self):
        """Client passes its configuration to boto3."""
        with patch("smelt_processor.storage.object_storage.boto3") as mock_boto:
            client = ObjectStorageClient(
                endpoint_url="https://s3.example.com",
                bucket="test-bucket",
                access_key_id="key-id",
                secret_access_key="secret-key",
            )
        assert client.bucket == "test-bucket"
        mock_boto.client.assert_called_once_with(
            "s3",
            endpoint_url="https://s3.example.com",
            aws_access_key_id="key-id",
            aws_secret_access_key="secret-key",
            region_name="auto",
        )

    def test_default_bucket(self, monkeypatch):
        monkeypatch.delenv("SMELT_STORAGE_BUCKET", raising=False)
        with patch("smelt_processor.storage.object_storage.boto3"):
            client = ObjectStorageClient(endpoint_url="https://s3.example.com")
        assert client.bucket == "smelt-files"

    def test_init_missing_endpoint_raises_storage_error(self, monkeypatch):
        """Client raises StorageError if endpoint is missing."""
        monkeypatch.delenv("SMELT_STORAGE_ENDPOINT", raising=False)
        with pytest.raises(StorageError, match="SMELT_STORAGE_ENDPOINT is required"):
            ObjectStorageClient(endpoint_url="")


class TestObjectStorageClientOperations:
    """Tests for fetch_object(), put_object() and put_result()."""

    def _make_client(self):
        """Create a client with a mocked boto3 s3 client."""
        with patch("smelt_processor.storage.object_storage.boto3") as mock_boto:
            mock_s3 = MagicMock()
            mock_boto.client.return_value = mock_s3
            client = ObjectStorageClient(
                endpoint_url="https://s3.example.com",
                bucket="test-bucket",
                access_key_id="key-id",
                secret_access_key="secret-key",
            )
        return client, mock_s3

    def test_fetch_object_returns_bytes(self):
        client, mock_s3 = self._make_client()
        mock_body = MagicMock()
        mock_body.read.return_value = b"audio-bytes"
        mock_s3.get_object.return_value = {"Body": mock_body}

        assert client.fetch_object("job1/file1.mp3") == b"audio-bytes"
        mock_s3.get_object.assert_called_once_with(Bucket="test-bucket", Key="job1/file1.mp3")

    def test_fetch_object_raises_storage_error(self):
        client, mock_s3 = self._make_client()
        mock_s3.get_object.side_effect = _client_error("NoSuchKey", "GetObject")

        with pytest.raises(StorageError, match="NoSuchKey") as exc_info:
            client.fetch_object("job1/missing.mp3")

        assert exc_info.value.operation == "fetch_object"

    def test_put_object_with_content_type(self):
        client, mock_s3 = self._make_client()

        client.put_object("k", b"data", "text/plain")

        mock_s3.put_object.assert_called_once_with(
            Bucket="test-bucket", Key="k", Body=b"data", ContentType="text/plain"
        )

    def test_put_object_raises_storage_error(self):
        client, mock_s3 = self._make_client()
        mock_s3.put_object.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(StorageError, match="AccessDenied"):
            client.put_object("k", b"data")

    def test_put_result_writes_markdown(self):
        client, mock_s3 = self._make_client()

        key = client.put_result("job1", "combined", "# Summary")

        assert key == "job1/results/combined.md"
        mock_s3.put_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="job1/results/combined.md",
            Body=b"# Summary",
            ContentType=RESULT_CONTENT_TYPE,
        )
