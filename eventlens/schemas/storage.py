"""
Storage Maintenance Schemas
"""

from pydantic import BaseModel, Field


class SweepRequest(BaseModel):
    cursor: str | None = None
    force: bool = False


class SweepResponse(BaseModel):
    checked: int
    deleted: int
    failed: int
    completed: bool
    next_cursor: str | None = None
    sample_deleted_keys: list[str] = Field(default_factory=list)
