"""S3-compatible object storage client for uploads and results.

Source files live at ``{job_id}/{file_id}.{ext}`` and generated results at
``{job_id}/results/{file_id}.md``. Works against Supabase Storage's S3
endpoint or any other S3-compatible service.
"""

from __future__ import annotations

import logging
import os

import boto3
from botocore.exceptions import ClientError

from smelt_processor.utils.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "smelt-files"
RESULT_CONTENT_TYPE = "text/markdown; charset=utf-8"


def source_key(job_id: str, file_id: str, filename: str) -> str:
    """Object key of an uploaded file. Extensionless names default to txt."""
    _, ext = os.path.splitext(filename)
    return f"{job_id}/{file_id}.{ext.lstrip('.').lower() or 'txt'}"


def result_key(job_id: str, file_id: str) -> str:
    return f"{job_id}/results/{file_id}.md"


class ObjectStorageClient:
    """boto3 client for the job file bucket.

    Reads configuration from environment variables:
        SMELT_STORAGE_ENDPOINT, SMELT_STORAGE_BUCKET,
        SMELT_STORAGE_ACCESS_KEY_ID, SMELT_STORAGE_SECRET_ACCESS_KEY
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region_name: str = "auto",
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("SMELT_STORAGE_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("SMELT_STORAGE_BUCKET", DEFAULT_BUCKET)
        self.access_key_id = access_key_id or os.environ.get(
            "SMELT_STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "SMELT_STORAGE_SECRET_ACCESS_KEY", ""
        )

        if not self.endpoint_url:
            raise StorageError("SMELT_STORAGE_ENDPOINT is required", operation="init")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=region_name,
        )

    def fetch_object(self, key: str) -> bytes:
        """Retrieve an object by key.

        Raises:
            StorageError: If the object cannot be retrieved.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise StorageError(
                f"Failed to fetch object '{key}': {error_code}",
                operation="fetch_object",
            ) from exc

    def put_object(self, key: str, data: bytes, content_type: str = "") -> None:
        """Store an object.

        Raises:
            StorageError: If the object cannot be stored.
        """
        try:
            kwargs: dict = {"Bucket": self.bucket, "Key": key, "Body": data}
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise StorageError(
                f"Failed to put object '{key}': {error_code}",
                operation="put_object",
            ) from exc

    def put_result(self, job_id: str, file_id: str, content: str) -> str:
        """Store one markdown result and return its key."""
        key = result_key(job_id, file_id)
        self.put_object(key, content.encode("utf-8"), RESULT_CONTENT_TYPE)
        logger.info("Stored result %s (%d chars)", key, len(content), extra={"job_id": job_id})
        return key
