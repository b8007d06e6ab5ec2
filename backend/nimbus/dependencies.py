"""Per-request service wiring shared by the routers."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from nimbus.auth import get_current_user_id
from nimbus.database import get_db
from nimbus.services.favorites import FavoriteRepository
from nimbus.services.file_repository import FileRepository


async def get_file_repository(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> FileRepository:
    return FileRepository(db, user_id)


async def get_favorite_repository(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> FavoriteRepository:
    return FavoriteRepository(db, user_id)
