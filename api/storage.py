"""
Object store gateway (S3 or any S3-compatible service via boto3).

Videos are persisted as a composite "<bucket>,<key>" reference rather than a
URL; a short-lived presigned GET URL is minted every time a record is read.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from api.metrics import STORAGE_BYTES_WRITTEN, STORAGE_OPERATIONS_TOTAL
from config import Settings

logger = logging.getLogger(__name__)

# Keys are unique per upload and never rewritten, so objects can be cached forever
CACHE_CONTROL_IMMUTABLE = "public, max-age=31536000"

REFERENCE_SEPARATOR = ","


class StoreWriteError(Exception):
    """Raised when an object could not be written (transport, service or deadline)."""

    pass


class StoreDeleteError(Exception):
    """Raised when a best-effort delete fails."""

    pass


class SignError(Exception):
    """Raised when a presigned URL cannot be produced."""

    pass


def encode_video_reference(bucket: str, key: str) -> str:
    """
    Encode a bucket/key pair for the videos.video_url column.

    Raises:
        ValueError: If either part is empty or contains the separator
    """
    if not bucket or not key:
        raise ValueError("Bucket and key must both be non-empty")
    if REFERENCE_SEPARATOR in bucket or REFERENCE_SEPARATOR in key:
        raise ValueError(f"Bucket and key must not contain '{REFERENCE_SEPARATOR}'")
    return f"{bucket}{REFERENCE_SEPARATOR}{key}"


def decode_video_reference(reference: str) -> Tuple[str, str]:
    """
    Split a stored reference back into (bucket, key).

    Raises:
        ValueError: If the value is not exactly two non-empty comma-separated parts
    """
    parts = reference.split(REFERENCE_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Malformed video reference: {reference!r}")
    return parts[0], parts[1]


class ObjectStore:
    """Put / delete / presign against an S3 client."""

    def __init__(self, client, put_timeout: float = 30.0):
        self.client = client
        self.put_timeout = put_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        # Socket-level timeouts so an abandoned upload thread does not linger forever
        boto_config = BotoConfig(
            region_name=settings.s3_region,
            connect_timeout=10,
            read_timeout=settings.store_put_timeout,
            retries={"max_attempts": 2, "mode": "standard"},
        )
        client = boto3.client("s3", endpoint_url=settings.s3_endpoint_url, config=boto_config)
        return cls(client, put_timeout=settings.store_put_timeout)

    async def put(self, bucket: str, key: str, path: Path, content_type: str) -> None:
        """
        Upload a local file under key, bounded by put_timeout.

        Raises:
            StoreWriteError: On any client/service error or when the deadline passes
        """

        def _upload() -> int:
            with open(path, "rb") as body:
                self.client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                    CacheControl=CACHE_CONTROL_IMMUTABLE,
                )
            return path.stat().st_size

        loop = asyncio.get_running_loop()
        try:
            size = await asyncio.wait_for(loop.run_in_executor(None, _upload), timeout=self.put_timeout)
        except asyncio.TimeoutError as e:
            STORAGE_OPERATIONS_TOTAL.labels(operation="put", result="timeout").inc()
            raise StoreWriteError(f"Upload of {key} to {bucket} timed out after {self.put_timeout}s") from e
        except (BotoCoreError, ClientError, OSError) as e:
            STORAGE_OPERATIONS_TOTAL.labels(operation="put", result="failed").inc()
            raise StoreWriteError(f"Upload of {key} to {bucket} failed: {e}") from e

        STORAGE_OPERATIONS_TOTAL.labels(operation="put", result="success").inc()
        STORAGE_BYTES_WRITTEN.inc(size)
        logger.info(f"Stored {size} bytes at {bucket}/{key}")

    async def delete(self, bucket: str, key: str) -> None:
        """
        Delete an object. Callers treat this as best-effort.

        Raises:
            StoreDeleteError: If the delete request fails
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self.client.delete_object(Bucket=bucket, Key=key))
        except (BotoCoreError, ClientError) as e:
            STORAGE_OPERATIONS_TOTAL.labels(operation="delete", result="failed").inc()
            raise StoreDeleteError(f"Delete of {key} from {bucket} failed: {e}") from e

        STORAGE_OPERATIONS_TOTAL.labels(operation="delete", result="success").inc()

    def sign(self, bucket: str, key: str, ttl: int) -> str:
        """
        Return a presigned GET URL valid for ttl seconds. Does not check the object exists.

        Raises:
            SignError: If the client cannot build the URL (credentials, config)
        """
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(ttl),
            )
        except (BotoCoreError, ClientError) as e:
            raise SignError(f"Could not presign {bucket}/{key}: {e}") from e

    def sign_reference(self, reference: Optional[str], ttl: int) -> Optional[str]:
        """
        Resolve a stored composite reference into a presigned URL.

        Returns None when no video has been uploaded yet.

        Raises:
            SignError: If the reference is malformed or signing fails
        """
        if not reference:
            return None
        try:
            bucket, key = decode_video_reference(reference)
        except ValueError as e:
            raise SignError(str(e)) from e
        return self.sign(bucket, key, ttl)
