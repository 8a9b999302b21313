"""
Media Schemas

Pydantic models for uploads, multipart sessions and bulk deletion.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MediaResponse(BaseModel):
    """Media response schema"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    uploaded_by_id: str
    s3_url: str
    thumbnail_s3_key: str | None = None
    filename: str
    mime_type: str
    file_size: int
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    exif_data: dict[str, Any] | None = None
    taken_at: datetime | None = None
    caption: str | None = None
    uploaded_at: datetime


class UploadRequest(BaseModel):
    """Declared file details for a presigned or multipart upload."""

    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    size: int = Field(..., gt=0)


class PresignedUploadResponse(BaseModel):
    media_id: str
    key: str
    upload_url: str


class FinalizeUploadRequest(BaseModel):
    key: str
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    caption: str | None = Field(None, max_length=2000)


class MultipartInitResponse(BaseModel):
    media_id: str
    upload_id: str
    key: str
    thumbnail_key: str


class PresignPartsRequest(BaseModel):
    key: str
    upload_id: str
    part_numbers: list[int] = Field(..., min_length=1, max_length=100)


class PresignedPart(BaseModel):
    part_number: int
    url: str


class CompletedPart(BaseModel):
    ETag: str
    PartNumber: int = Field(..., ge=1, le=10000)


class CompleteMultipartRequest(BaseModel):
    key: str
    upload_id: str
    parts: list[CompletedPart]
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str


class AbortMultipartRequest(BaseModel):
    key: str
    upload_id: str


class BulkDeleteRequest(BaseModel):
    media_ids: list[str] = Field(..., min_length=1)


class BulkDeleteResponse(BaseModel):
    deleted: int
    deleted_ids: list[str]
    skipped: int
    failed: int
