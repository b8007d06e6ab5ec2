"""Favorite request/response schemas."""
import uuid
from datetime import datetime
from typing import Optional
from nimbus.schemas.base import CamelModel
from nimbus.schemas.file import FileView


class FavoriteCreate(CamelModel):
    file_id: uuid.UUID


class FavoriteResponse(CamelModel):
    file_id: uuid.UUID
    created_at: Optional[datetime] = None
    file: FileView
