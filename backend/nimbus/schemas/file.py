"""File and folder request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import Field, field_validator
from nimbus.schemas.base import CamelModel
from nimbus.services.file_types import classify


class FileView(CamelModel):
    id: uuid.UUID
    name: str
    type: str
    category: str
    extension: str = ""
    size: int = 0
    is_folder: bool
    parent_id: Optional[uuid.UUID] = None
    path: str = "/"
    tags: list[str] = []
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v if v is not None else []

    @classmethod
    def from_record(cls, record) -> "FileView":
        """Build the API view of a FileRecord, adding its display category."""
        return cls(
            id=record.id,
            name=record.name,
            type=record.type,
            category=classify(record.type, record.extension).value,
            extension=record.extension,
            size=record.size or 0,
            is_folder=record.is_folder,
            parent_id=record.parent_id,
            path=record.path,
            tags=record.tags,
            url=record.url,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class FileErrorView(CamelModel):
    error: bool = True
    name: str
    error_message: str


class UploadResponse(CamelModel):
    success: bool
    files_processed: int
    files_successful: int
    files: list[FileView | FileErrorView] = []
    file: Optional[FileView] = None
    error: Optional[str] = None


class FileListResponse(CamelModel):
    items: list[FileView]
    total: int


class FolderContentsResponse(CamelModel):
    folder: FileView
    items: list[FileView]


class FolderCreate(CamelModel):
    name: str = Field(..., min_length=1)
    parent_id: Optional[uuid.UUID] = None
    tags: list[str] = []


class RenameRequest(CamelModel):
    name: str = Field(..., min_length=1)
    tags: Optional[list[str]] = None


class TagsUpdate(CamelModel):
    tags: list[str]


class MoveRequest(CamelModel):
    file_ids: list[uuid.UUID]
    target_folder_id: Optional[uuid.UUID] = None


class MoveResponse(CamelModel):
    success: bool = True
    moved: int
    files: list[FileView]


class DeleteRequest(CamelModel):
    file_ids: list[uuid.UUID]


class DeleteResponse(CamelModel):
    success: bool = True
    deleted: int


class DownloadRequest(CamelModel):
    file_ids: list[str] = []
    is_folder: bool = False


class NameConflictRequest(CamelModel):
    folder_id: Optional[str] = None  # id, or "root" / null for the top level
    file_names: list[str]


class NameConflictResponse(CamelModel):
    conflicts: list[str]


class RecentFilesResponse(CamelModel):
    files: list[FileView]
