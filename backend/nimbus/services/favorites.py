"""Per-user favorites. Entries pointing at deleted files are hidden, not removed."""
import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nimbus.models.favorite import Favorite
from nimbus.models.file_record import FileRecord
from nimbus.services.file_repository import FileRepository

logger = logging.getLogger(__name__)


class FavoriteRepository:
    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id
        self.files = FileRepository(db, user_id)

    async def _find(self, file_id: uuid.UUID) -> Favorite | None:
        result = await self.db.execute(
            select(Favorite).where(Favorite.user_id == self.user_id, Favorite.file_id == file_id)
        )
        return result.scalar_one_or_none()

    async def add(self, file_id: uuid.UUID) -> tuple[Favorite, FileRecord]:
        """Favorite a live file or folder. Adding twice is a no-op."""
        record = await self.files.require(file_id)
        existing = await self._find(file_id)
        if existing:
            return existing, record

        favorite = Favorite(user_id=self.user_id, file_id=file_id)
        self.db.add(favorite)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find(file_id)
            if existing is None:
                raise
            await self.db.refresh(record)
            return existing, record
        await self.db.refresh(favorite)
        logger.info(f"{self.user_id} favorited {file_id}")
        return favorite, record

    async def remove(self, file_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            delete(Favorite).where(Favorite.user_id == self.user_id, Favorite.file_id == file_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def list_live(self) -> list[tuple[Favorite, FileRecord]]:
        """Favorites whose target is still live, newest first."""
        result = await self.db.execute(
            select(Favorite, FileRecord)
            .join(FileRecord, FileRecord.id == Favorite.file_id)
            .where(
                Favorite.user_id == self.user_id,
                FileRecord.uploader_id == self.user_id,
                FileRecord.is_deleted.is_(False),
            )
            .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        )
        return [(fav, record) for fav, record in result.all()]
