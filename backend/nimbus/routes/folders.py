"""Folders API routes."""
from uuid import UUID
from fastapi import APIRouter, Depends

from nimbus.dependencies import get_file_repository
from nimbus.schemas.file import FileView, FolderContentsResponse, FolderCreate
from nimbus.services.file_repository import FileRepository

router = APIRouter(prefix="/api/folders", tags=["folders"])


@router.post("", response_model=FileView, status_code=201)
async def create_folder(
    body: FolderCreate,
    repo: FileRepository = Depends(get_file_repository),
):
    """Create a folder under `parentId` (root when omitted)."""
    folder = await repo.create_folder(body.name, body.parent_id, tags=body.tags)
    return FileView.from_record(folder)


@router.get("/{folder_id}/contents", response_model=FolderContentsResponse)
async def get_folder_contents(
    folder_id: UUID,
    repo: FileRepository = Depends(get_file_repository),
):
    folder = await repo.require_folder(folder_id)
    children = await repo.list_children(folder_id)
    return FolderContentsResponse(
        folder=FileView.from_record(folder),
        items=[FileView.from_record(c) for c in children],
    )


@router.get("/{folder_id}/path", response_model=list[FileView])
async def get_folder_path(
    folder_id: UUID,
    repo: FileRepository = Depends(get_file_repository),
):
    """Breadcrumb trail from the root down to this folder."""
    return [FileView.from_record(r) for r in await repo.ancestors(folder_id)]
