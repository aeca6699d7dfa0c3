"""Durable media storage on Google Cloud Storage."""

from __future__ import annotations

import os

from google.cloud import storage

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

PUBLIC_URL_BASE = "https://storage.googleapis.com"


class GCSBlobStorage:
    """BlobStorage writing objects into one bucket.

    Objects are addressed by path; the returned URL is the bucket's public
    URL for the object.
    """

    def __init__(self, bucket_name: str, client: storage.Client | None = None) -> None:
        self._bucket_name = bucket_name
        self._client = client
        self._bucket: storage.Bucket | None = None

    @classmethod
    def from_env(cls) -> "GCSBlobStorage":
        """Build from MEDIA_BUCKET.

        Raises:
            RuntimeError: If MEDIA_BUCKET is not set.
        """
        bucket = os.environ.get("MEDIA_BUCKET", "")
        if not bucket:
            raise RuntimeError("MEDIA_BUCKET environment variable not set")
        return cls(bucket)

    def _get_bucket(self) -> storage.Bucket:
        if self._bucket is None:
            client = self._client or storage.Client()
            self._bucket = client.bucket(self._bucket_name)
        return self._bucket

    def public_url(self, path: str) -> str:
        return f"{PUBLIC_URL_BASE}/{self._bucket_name}/{path}"

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        blob = self._get_bucket().blob(path)
        blob.upload_from_string(data, content_type=content_type)
        logger.info(
            "media uploaded",
            extra={
                "extra_fields": safe_log_context(
                    bucket=self._bucket_name, size=len(data), content_type=content_type
                )
            },
        )
        return self.public_url(path)
