"""Favorite model - (user, file) join, filtered against live files at read time."""
import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column
from nimbus.models.base import Base


class Favorite(Base):
    __tablename__ = "favorites"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # No foreign key: deleting a file leaves the favorite behind
    file_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "file_id", name="uq_favorite"),
    )
