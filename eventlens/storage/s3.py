"""
S3 Storage Backend

boto3 is synchronous, so every client call is pushed to a worker thread to
keep the event loop free. The client is constructed by the process entry
point and handed in; nothing here creates clients on import.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from urllib.parse import urlencode

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from eventlens.exceptions import StorageError
from eventlens.storage.base import BatchDeleteResult, ListPage, ObjectStorage, StoredObject

logger = logging.getLogger(__name__)

CACHE_CONTROL = "max-age=31536000, immutable"
DELETE_BATCH_SIZE = 1000

_ABSENT_CODES = {"NoSuchKey", "404", "NotFound"}


def build_s3_client(settings):
    """Create a boto3 S3 client from application settings."""
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        region_name=settings.s3_region,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
    )


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class S3Storage(ObjectStorage):
    def __init__(self, client, bucket: str, public_url: str | None = None, presign_expiry: int = 3600):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_url.rstrip("/") if public_url else None
        self.presign_expiry = presign_expiry

    async def _call(self, method: str, *, key: str | None = None, **params):
        fn = getattr(self.client, method)
        try:
            return await asyncio.to_thread(partial(fn, Bucket=self.bucket, **params))
        except ClientError as e:
            logger.error("S3 %s failed for %s: %s", method, key, _error_code(e) or e)
            raise StorageError(f"Storage {method} failed", key=key, operation=method) from e
        except BotoCoreError as e:
            logger.error("S3 %s failed for %s: %s", method, key, e)
            raise StorageError(f"Storage {method} failed", key=key, operation=method) from e

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        endpoint = self.client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self.bucket}/{key}"

    # ── Objects ───────────────────────────────────────────────────────────────

    async def put(self, data: bytes, key: str, content_type: str, tags: dict[str, str] | None = None) -> str:
        params = {"Key": key, "Body": data, "ContentType": content_type, "CacheControl": CACHE_CONTROL}
        if tags:
            params["Tagging"] = urlencode(tags)

        try:
            await asyncio.to_thread(partial(self.client.put_object, Bucket=self.bucket, **params))
        except ClientError as e:
            # Some S3-compatible backends do not implement object tagging.
            if not tags or _error_code(e) != "NotImplemented":
                logger.error("S3 put_object failed for %s: %s", key, _error_code(e) or e)
                raise StorageError("Storage put failed", key=key, operation="put_object") from e
            logger.warning("Backend rejected object tags; retrying %s without tags", key)
            params.pop("Tagging")
            await self._call("put_object", key=key, **params)
        except BotoCoreError as e:
            logger.error("S3 put_object failed for %s: %s", key, e)
            raise StorageError("Storage put failed", key=key, operation="put_object") from e

        return self.public_url(key)

    async def get(self, key: str) -> bytes:
        response = await self._call("get_object", key=key, Key=key)
        return await asyncio.to_thread(response["Body"].read)

    async def head(self, key: str) -> StoredObject | None:
        try:
            response = await asyncio.to_thread(partial(self.client.head_object, Bucket=self.bucket, Key=key))
        except ClientError as e:
            if _error_code(e) in _ABSENT_CODES:
                return None
            raise StorageError("Storage head failed", key=key, operation="head_object") from e
        return StoredObject(key=key, size=response["ContentLength"], last_modified=response["LastModified"])

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(partial(self.client.delete_object, Bucket=self.bucket, Key=key))
        except ClientError as e:
            if _error_code(e) in _ABSENT_CODES:
                return
            logger.error("S3 delete_object failed for %s: %s", key, _error_code(e) or e)
            raise StorageError("Storage delete failed", key=key, operation="delete_object") from e
        except BotoCoreError as e:
            raise StorageError("Storage delete failed", key=key, operation="delete_object") from e

    async def delete_batch(self, keys: list[str]) -> BatchDeleteResult:
        """Delete up to 1000 keys per request; per-key failures are reported, not raised."""
        result = BatchDeleteResult()
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await self._call(
                    "delete_objects",
                    key=chunk[0],
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except StorageError:
                for k in chunk:
                    result.failed[k] = "RequestFailed"
                continue

            errors = {
                e["Key"]: e.get("Code", "Unknown")
                for e in response.get("Errors", [])
                if e.get("Code") not in _ABSENT_CODES
            }
            result.failed.update(errors)
            result.deleted.extend(k for k in chunk if k not in errors)

        if result.failed:
            logger.warning("Batch delete failed for %d of %d keys", len(result.failed), len(keys))
        return result

    async def list(self, continuation_token: str | None = None, prefix: str | None = None) -> ListPage:
        params = {"MaxKeys": 1000}
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if prefix:
            params["Prefix"] = prefix
        response = await self._call("list_objects_v2", **params)
        objects = [
            StoredObject(key=o["Key"], size=o.get("Size", 0), last_modified=o["LastModified"])
            for o in response.get("Contents", [])
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(objects=objects, next_token=next_token)

    # ── Multipart ─────────────────────────────────────────────────────────────

    async def create_multipart(self, key: str, content_type: str, tags: dict[str, str] | None = None) -> str:
        params = {"Key": key, "ContentType": content_type, "CacheControl": CACHE_CONTROL}
        if tags:
            params["Tagging"] = urlencode(tags)
        response = await self._call("create_multipart_upload", key=key, **params)
        return response["UploadId"]

    async def presign_part(self, key: str, upload_id: str, part_number: int) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            ClientMethod="upload_part",
            Params={"Bucket": self.bucket, "Key": key, "UploadId": upload_id, "PartNumber": part_number},
            ExpiresIn=self.presign_expiry,
        )

    async def complete_multipart(self, key: str, upload_id: str, parts: list[dict]) -> str:
        ordered = sorted(
            ({"ETag": p["ETag"], "PartNumber": int(p["PartNumber"])} for p in parts),
            key=lambda p: p["PartNumber"],
        )
        await self._call(
            "complete_multipart_upload",
            key=key,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": ordered},
        )
        return self.public_url(key)

    async def abort_multipart(self, key: str, upload_id: str) -> None:
        try:
            await asyncio.to_thread(
                partial(self.client.abort_multipart_upload, Bucket=self.bucket, Key=key, UploadId=upload_id)
            )
        except ClientError as e:
            if _error_code(e) == "NoSuchUpload":
                logger.debug("Multipart upload %s for %s already gone", upload_id, key)
                return
            logger.error("Failed to abort multipart upload %s for %s: %s", upload_id, key, _error_code(e) or e)
            raise StorageError("Storage abort failed", key=key, operation="abort_multipart_upload") from e

    # ── Presigned URLs ────────────────────────────────────────────────────────

    async def presign_put(self, key: str, content_type: str) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            ClientMethod="put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=self.presign_expiry,
            HttpMethod="PUT",
        )

    async def presign_get(self, key: str) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.presign_expiry,
        )
