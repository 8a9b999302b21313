"""
Multipart Uploader

Uploads a large original in fixed-size parts through presigned part URLs:
create the upload, presign part numbers in batches, PUT up to
``concurrency`` parts at once, collect ETags and complete. Any failure,
including cancellation of the calling task, aborts the upload so the
backend does not keep billing for orphaned parts.
"""

import asyncio
import logging

import httpx

from eventlens.exceptions import StorageError
from eventlens.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

PART_SIZE = 10 * 1024 * 1024
MAX_CONCURRENT_PARTS = 4
PRESIGN_BATCH_SIZE = 10
PART_TIMEOUT = 300.0


class MultipartUploader:
    def __init__(
        self,
        storage: ObjectStorage,
        http_client: httpx.AsyncClient,
        part_size: int = PART_SIZE,
        concurrency: int = MAX_CONCURRENT_PARTS,
        presign_batch_size: int = PRESIGN_BATCH_SIZE,
    ) -> None:
        if part_size <= 0 or concurrency <= 0 or presign_batch_size <= 0:
            raise ValueError("part_size, concurrency and presign_batch_size must be positive")
        self.storage = storage
        self.http_client = http_client
        self.part_size = part_size
        self.concurrency = concurrency
        self.presign_batch_size = presign_batch_size

    def part_count(self, size: int) -> int:
        return max(1, -(-size // self.part_size))

    async def upload(self, data: bytes, key: str, content_type: str, tags: dict[str, str] | None = None) -> str:
        """Upload *data* to *key* and return its public URL."""
        upload_id = await self.storage.create_multipart(key, content_type, tags)
        logger.info("Started multipart upload %s for %s (%d parts)", upload_id, key, self.part_count(len(data)))
        try:
            parts = await self._upload_parts(data, key, upload_id)
            return await self.storage.complete_multipart(key, upload_id, parts)
        except BaseException:
            await asyncio.shield(self._abort(key, upload_id))
            raise

    async def _abort(self, key: str, upload_id: str) -> None:
        try:
            await self.storage.abort_multipart(key, upload_id)
            logger.info("Aborted multipart upload %s for %s", upload_id, key)
        except StorageError:
            logger.error("Could not abort multipart upload %s for %s; parts may remain", upload_id, key)

    async def _upload_parts(self, data: bytes, key: str, upload_id: str) -> list[dict]:
        total = self.part_count(len(data))
        semaphore = asyncio.Semaphore(self.concurrency)
        parts: list[dict] = []

        for batch_start in range(1, total + 1, self.presign_batch_size):
            part_numbers = list(range(batch_start, min(batch_start + self.presign_batch_size, total + 1)))
            urls = await asyncio.gather(*(self.storage.presign_part(key, upload_id, n) for n in part_numbers))

            tasks = [
                asyncio.create_task(self._put_part(semaphore, url, n, self._chunk(data, n)))
                for n, url in zip(part_numbers, urls)
            ]
            try:
                parts.extend(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        return parts

    def _chunk(self, data: bytes, part_number: int) -> bytes:
        start = (part_number - 1) * self.part_size
        return data[start:start + self.part_size]

    async def _put_part(self, semaphore: asyncio.Semaphore, url: str, part_number: int, body: bytes) -> dict:
        async with semaphore:
            try:
                response = await self.http_client.put(url, content=body, timeout=PART_TIMEOUT)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise StorageError(f"Upload of part {part_number} failed", operation="upload_part") from e

        etag = response.headers.get("etag")
        if not etag:
            raise StorageError(f"Part {part_number} response carried no ETag", operation="upload_part")
        return {"ETag": etag, "PartNumber": part_number}
