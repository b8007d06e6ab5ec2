"""Tag API routes: list, apply to many files, remove."""
from fastapi import APIRouter, Depends

from nimbus.dependencies import get_file_repository
from nimbus.exceptions import ValidationError
from nimbus.schemas.tag import (
    TagApplyRequest,
    TagApplyResponse,
    TagCount,
    TagDeleteRequest,
    TagDeleteResponse,
)
from nimbus.services.file_repository import FileRepository

router = APIRouter(prefix="/api/tags", tags=["tags"])


@router.get("", response_model=list[TagCount])
async def list_tags(repo: FileRepository = Depends(get_file_repository)):
    """Every tag in use on the caller's live files and folders, alphabetical."""
    return [TagCount(tag=tag, count=count) for tag, count in await repo.list_tags()]


@router.post("", response_model=TagApplyResponse)
async def apply_tag(
    body: TagApplyRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    updated = await repo.add_tag(body.tag, body.file_ids)
    return TagApplyResponse(tag=body.tag.strip(), updated=updated)


@router.post("/delete", response_model=TagDeleteResponse)
async def delete_tag(
    body: TagDeleteRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    """Remove a tag from the listed files, or from all files with deleteAll."""
    if body.delete_all:
        deleted = await repo.remove_tag(body.tag)
    elif body.file_ids:
        deleted = await repo.remove_tag(body.tag, body.file_ids)
    else:
        raise ValidationError("Either fileIds or deleteAll is required")
    return TagDeleteResponse(deleted_count=deleted)
