"""
API Key Schemas
"""

from pydantic import BaseModel, Field


class APIKeyCreate(BaseModel):
    name: str | None = Field(None, max_length=100)
    note: str | None = Field(None, max_length=500)
    can_upload: bool = False


class APIKeyResponse(BaseModel):
    id: str
    name: str | None = None
    note: str | None = None
    key_prefix: str
    can_upload: bool
    is_revoked: bool
    last_used_at: str | None = None
    created_at: str | None = None


class APIKeyCreatedResponse(APIKeyResponse):
    """Returned once, at creation; ``key`` is never retrievable again."""

    key: str
    message: str
