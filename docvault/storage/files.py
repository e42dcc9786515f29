"""
File Storage — resolve a document's file reference to a URI the OCR
service can fetch.

Reference forms accepted in documents.storage_path:
  https://… / http://…   → returned unchanged (already publicly reachable)
  s3://bucket/key        → presigned GET on that bucket
  <key>                  → presigned GET on settings.s3_bucket

Presigned URLs are short-lived (settings.presign_ttl_seconds) and scoped to
the exact object key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aioboto3
from botocore.exceptions import ClientError

from docvault.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresignedUrl:
    url:        str
    expires_in: int   # seconds
    method:     str   # GET


class FileStorageError(Exception):
    """The file reference could not be turned into a fetchable URI."""


def split_reference(file_ref: str, default_bucket: str) -> tuple[str, str]:
    """
    Return (bucket, key) for an s3:// or bare-key reference.

    >>> split_reference("s3://vault/u1/a.pdf", "other")
    ('vault', 'u1/a.pdf')
    >>> split_reference("/u1/a.pdf", "vault")
    ('vault', 'u1/a.pdf')
    """
    if file_ref.startswith("s3://"):
        bucket, _, key = file_ref[len("s3://"):].partition("/")
        if not bucket or not key:
            raise FileStorageError(f"Malformed S3 reference: {file_ref!r}")
        return bucket, key
    key = file_ref.lstrip("/")
    if not key:
        raise FileStorageError("Empty file reference")
    return default_bucket, key


class FileStorage:
    """
    Async S3-backed resolver.

    One instance can be shared across pipeline invocations; each call opens
    its own client context.
    """

    def __init__(
        self,
        bucket:      str | None = None,
        region:      str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._bucket  = bucket or settings.s3_bucket
        self._region  = region or settings.aws_region
        self._ttl     = ttl_seconds or settings.presign_ttl_seconds
        self._session = aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._region)

    async def resolve(self, file_ref: str) -> str:
        """Resolve a stored reference to a URI usable by the OCR call."""
        if file_ref.startswith(("http://", "https://")):
            return file_ref

        bucket, key = split_reference(file_ref, self._bucket)
        presigned = await self.generate_presigned_get(bucket, key)
        return presigned.url

    async def generate_presigned_get(self, bucket: str, key: str) -> PresignedUrl:
        try:
            async with self._client() as s3:
                url = await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": bucket, "Key": key},
                    ExpiresIn=self._ttl,
                )
        except ClientError as exc:
            logger.error("S3 presign failed | bucket=%s key=%s error=%s", bucket, key, exc)
            raise FileStorageError(f"Cannot presign s3://{bucket}/{key}: {exc}") from exc

        logger.debug("S3 presign | bucket=%s key=%s ttl=%ds", bucket, key, self._ttl)
        return PresignedUrl(url=url, expires_in=self._ttl, method="GET")
