"""Favorites API routes."""
from uuid import UUID
from fastapi import APIRouter, Depends

from nimbus.dependencies import get_favorite_repository
from nimbus.schemas.favorite import FavoriteCreate, FavoriteResponse
from nimbus.schemas.file import FileView
from nimbus.services.favorites import FavoriteRepository

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.get("", response_model=list[FavoriteResponse])
async def list_favorites(repo: FavoriteRepository = Depends(get_favorite_repository)):
    """Favorites of the caller, skipping files that have since been deleted."""
    return [
        FavoriteResponse(file_id=fav.file_id, created_at=fav.created_at, file=FileView.from_record(record))
        for fav, record in await repo.list_live()
    ]


@router.post("", response_model=FavoriteResponse, status_code=201)
async def add_favorite(
    body: FavoriteCreate,
    repo: FavoriteRepository = Depends(get_favorite_repository),
):
    fav, record = await repo.add(body.file_id)
    return FavoriteResponse(file_id=fav.file_id, created_at=fav.created_at, file=FileView.from_record(record))


@router.delete("/{file_id}")
async def remove_favorite(
    file_id: UUID,
    repo: FavoriteRepository = Depends(get_favorite_repository),
):
    removed = await repo.remove(file_id)
    return {"success": True, "removed": removed}
