from .base import BatchDeleteResult, ListPage, ObjectStorage, StoredObject
from .s3 import S3Storage, build_s3_client

__all__ = ["BatchDeleteResult", "ListPage", "ObjectStorage", "S3Storage", "StoredObject", "build_s3_client"]
