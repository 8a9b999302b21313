"""
Mock implementations of the external services the core talks to

Provides:
- InMemoryStorage: an ObjectStorage with call recording and failure injection
- FakeRedis: the three commands the rate limiter issues
- MockAuditLogger: records audit rows in memory
"""

from datetime import datetime, timezone

from redis.exceptions import ConnectionError as RedisConnectionError

from eventlens.exceptions import StorageError
from eventlens.storage.base import BatchDeleteResult, ListPage, ObjectStorage, StoredObject


class InMemoryStorage(ObjectStorage):
    """Dictionary-backed object store.

    ``fail_put`` / ``fail_delete`` hold keys whose operations fail;
    ``fail_all_deletes`` makes every delete fail.
    """

    def __init__(self, page_size: int = 1000):
        self.objects: dict[str, dict] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.page_size = page_size
        self.fail_put: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_all_deletes = False
        self.fail_complete = False
        self.uploads: dict[str, dict] = {}
        self.aborted: list[str] = []
        self._upload_counter = 0

    # ── Test helpers ──────────────────────────────────────────────────────────

    def add_object(self, key: str, data: bytes = b"x", last_modified: datetime | None = None, content_type: str = ""):
        self.objects[key] = {
            "data": data,
            "content_type": content_type,
            "tags": {},
            "last_modified": last_modified or datetime.now(timezone.utc),
        }

    def receive_part(self, upload_id: str, part_number: int, body: bytes) -> str:
        """Store a part as if the client PUT it to its presigned URL; returns the ETag."""
        self.uploads[upload_id]["parts"][part_number] = body
        return f'"etag-{part_number}"'

    def _deletes_fail(self, key: str) -> bool:
        return self.fail_all_deletes or key in self.fail_delete

    # ── ObjectStorage ─────────────────────────────────────────────────────────

    async def put(self, data, key, content_type, tags=None):
        self.calls.append(("put", key))
        if key in self.fail_put:
            raise StorageError("Injected put failure", key=key, operation="put")
        self.objects[key] = {
            "data": data,
            "content_type": content_type,
            "tags": dict(tags or {}),
            "last_modified": datetime.now(timezone.utc),
        }
        return self.public_url(key)

    async def get(self, key):
        self.calls.append(("get", key))
        obj = self.objects.get(key)
        if obj is None:
            raise StorageError("Object not found", key=key, operation="get")
        return obj["data"]

    async def head(self, key):
        self.calls.append(("head", key))
        obj = self.objects.get(key)
        if obj is None:
            return None
        return StoredObject(key=key, size=len(obj["data"]), last_modified=obj["last_modified"])

    async def delete(self, key):
        self.calls.append(("delete", key))
        if self._deletes_fail(key):
            raise StorageError("Injected delete failure", key=key, operation="delete")
        self.objects.pop(key, None)

    async def delete_batch(self, keys):
        self.calls.append(("delete_batch", None))
        result = BatchDeleteResult()
        for key in keys:
            if self._deletes_fail(key):
                result.failed[key] = "InternalError"
            else:
                self.objects.pop(key, None)
                result.deleted.append(key)
        return result

    async def list(self, continuation_token=None, prefix=None):
        self.calls.append(("list", continuation_token))
        # Tokens are the last key returned, so deleting listed objects never skips any
        keys = sorted(
            k
            for k in self.objects
            if (prefix is None or k.startswith(prefix)) and (continuation_token is None or k > continuation_token)
        )
        page_keys = keys[: self.page_size]
        page = [
            StoredObject(key=k, size=len(self.objects[k]["data"]), last_modified=self.objects[k]["last_modified"])
            for k in page_keys
        ]
        next_token = page_keys[-1] if len(keys) > self.page_size else None
        return ListPage(objects=page, next_token=next_token)

    async def create_multipart(self, key, content_type, tags=None):
        self._upload_counter += 1
        upload_id = f"upload-{self._upload_counter}"
        self.calls.append(("create_multipart", key))
        self.uploads[upload_id] = {"key": key, "content_type": content_type, "tags": dict(tags or {}), "parts": {}}
        return upload_id

    async def presign_part(self, key, upload_id, part_number):
        return f"https://storage.test/{key}?uploadId={upload_id}&partNumber={part_number}"

    async def complete_multipart(self, key, upload_id, parts):
        self.calls.append(("complete_multipart", key))
        upload = self.uploads.get(upload_id)
        if self.fail_complete or upload is None:
            raise StorageError("Injected complete failure", key=key, operation="complete_multipart")
        numbers = [p["PartNumber"] for p in parts]
        if numbers != sorted(numbers) or any(n not in upload["parts"] for n in numbers):
            raise StorageError("Invalid part list", key=key, operation="complete_multipart")
        data = b"".join(upload["parts"][n] for n in numbers)
        del self.uploads[upload_id]
        self.add_object(key, data, content_type=upload["content_type"])
        return self.public_url(key)

    async def abort_multipart(self, key, upload_id):
        self.calls.append(("abort_multipart", key))
        self.uploads.pop(upload_id, None)
        self.aborted.append(upload_id)

    async def presign_put(self, key, content_type):
        return f"https://storage.test/{key}?signature=put"

    async def presign_get(self, key):
        return f"https://storage.test/{key}?signature=get"

    def public_url(self, key):
        return f"https://cdn.test/{key}"

    def operations(self, name: str) -> list:
        return [key for op, key in self.calls if op == name]


class FakeRedis:
    """Just enough of redis.asyncio.Redis for fixed-window counting."""

    def __init__(self, fail: bool = False):
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def incr(self, key):
        self._check()
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds * 1000
        return True

    async def pttl(self, key):
        self._check()
        return self.ttls.get(key, -1)

    async def aclose(self):
        return None


class MockAuditLogger:
    """Mock for audit logging that tracks calls without database operations"""

    def __init__(self):
        self.logs = []

    async def log_activity(self, user_id, action, resource_type, resource_id=None, details=None, meta=None):
        self.logs.append(
            {
                "user_id": user_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "details": details,
            }
        )

    def get_logs_for_action(self, action: str):
        return [log for log in self.logs if log["action"] == action]
