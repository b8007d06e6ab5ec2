"""Storage usage API route."""
from fastapi import APIRouter, Depends

from nimbus.dependencies import get_file_repository
from nimbus.schemas.storage import StorageInfoResponse
from nimbus.services.file_repository import FileRepository

router = APIRouter(prefix="/api/storage", tags=["storage"])


@router.get("/info", response_model=StorageInfoResponse)
async def get_storage_info(repo: FileRepository = Depends(get_file_repository)):
    """Counts and bytes of the caller's live files, broken down by category."""
    return StorageInfoResponse(**await repo.stats())
