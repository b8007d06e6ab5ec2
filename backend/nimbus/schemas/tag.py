"""Tag request/response schemas."""
import uuid
from typing import Optional

from pydantic import Field

from nimbus.schemas.base import CamelModel


class TagCount(CamelModel):
    tag: str
    count: int


class TagApplyRequest(CamelModel):
    tag: str = Field(..., min_length=1)
    file_ids: list[uuid.UUID]


class TagApplyResponse(CamelModel):
    success: bool = True
    tag: str
    updated: int


class TagDeleteRequest(CamelModel):
    tag: str = Field(..., min_length=1)
    file_ids: Optional[list[uuid.UUID]] = None
    delete_all: bool = False


class TagDeleteResponse(CamelModel):
    success: bool = True
    deleted_count: int
