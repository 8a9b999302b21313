from .api_keys import APIKeyCreate, APIKeyCreatedResponse, APIKeyResponse
from .events import EventResponse, JoinEventRequest, SeriesResponse
from .media import (
    AbortMultipartRequest,
    BulkDeleteRequest,
    BulkDeleteResponse,
    CompleteMultipartRequest,
    FinalizeUploadRequest,
    MediaResponse,
    MultipartInitResponse,
    PresignedPart,
    PresignedUploadResponse,
    PresignPartsRequest,
    UploadRequest,
)
from .storage import SweepRequest, SweepResponse

__all__ = [
    "APIKeyCreate",
    "APIKeyCreatedResponse",
    "APIKeyResponse",
    "AbortMultipartRequest",
    "BulkDeleteRequest",
    "BulkDeleteResponse",
    "CompleteMultipartRequest",
    "EventResponse",
    "FinalizeUploadRequest",
    "JoinEventRequest",
    "MediaResponse",
    "MultipartInitResponse",
    "PresignPartsRequest",
    "PresignedPart",
    "PresignedUploadResponse",
    "SeriesResponse",
    "SweepRequest",
    "SweepResponse",
    "UploadRequest",
]
