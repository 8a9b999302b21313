"""
Object Storage Interface

The operations the core needs from an S3-compatible store. Deleting an
absent key and aborting an already-aborted multipart upload both succeed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class ListPage:
    objects: list[StoredObject]
    next_token: str | None = None


@dataclass
class BatchDeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # key -> error code

    @property
    def has_errors(self) -> bool:
        return bool(self.failed)


class ObjectStorage(ABC):
    """Async object store used by the asset pipeline and the reconcilers."""

    @abstractmethod
    async def put(self, data: bytes, key: str, content_type: str, tags: dict[str, str] | None = None) -> str:
        """Write *data* under *key* and return its public URL."""

    @abstractmethod
    async def get(self, key: str) -> bytes: ...

    @abstractmethod
    async def head(self, key: str) -> StoredObject | None:
        """Return the object's size and timestamp, or None when absent."""

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def delete_batch(self, keys: list[str]) -> BatchDeleteResult: ...

    @abstractmethod
    async def list(self, continuation_token: str | None = None, prefix: str | None = None) -> ListPage: ...

    @abstractmethod
    async def create_multipart(self, key: str, content_type: str, tags: dict[str, str] | None = None) -> str:
        """Start a multipart upload and return its upload id."""

    @abstractmethod
    async def presign_part(self, key: str, upload_id: str, part_number: int) -> str: ...

    @abstractmethod
    async def complete_multipart(self, key: str, upload_id: str, parts: list[dict]) -> str:
        """Assemble ``[{"ETag", "PartNumber"}]`` parts and return the object's public URL."""

    @abstractmethod
    async def abort_multipart(self, key: str, upload_id: str) -> None: ...

    @abstractmethod
    async def presign_put(self, key: str, content_type: str) -> str: ...

    @abstractmethod
    async def presign_get(self, key: str) -> str: ...

    @abstractmethod
    def public_url(self, key: str) -> str: ...

    async def get_storage_stats(self) -> dict:
        """Object count and total bytes across the whole bucket."""
        total_size = 0
        object_count = 0
        token = None
        while True:
            page = await self.list(token)
            object_count += len(page.objects)
            total_size += sum(o.size for o in page.objects)
            token = page.next_token
            if not token:
                return {"object_count": object_count, "total_size": total_size}
