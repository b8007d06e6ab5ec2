"""FileRecord model - file and folder metadata (bytes live in the blob store)."""
import uuid
from datetime import datetime
from sqlalchemy import String, BigInteger, Boolean, DateTime, ForeignKey, Index, JSON, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column
from nimbus.models.base import Base, TimestampMixin, UploaderMixin


class FileRecord(Base, TimestampMixin, UploaderMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Physical blob name; never derived from `name` after creation
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    path: Mapped[str] = mapped_column(String(2000), default="/")
    type: Mapped[str] = mapped_column(String(255), default="application/octet-stream")
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    is_folder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("files.id"), nullable=True, index=True
    )
    tags: Mapped[list] = mapped_column(JSON, default=list)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Sibling names are unique among live records only
        Index(
            "uq_files_sibling_name",
            "uploader_id", "parent_id", "is_folder", "name",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("idx_files_uploader_parent", "uploader_id", "parent_id", "is_deleted"),
    )

    @property
    def extension(self) -> str:
        if self.is_folder or "." not in self.name.strip("."):
            return ""
        return self.name.rsplit(".", 1)[-1].lower()
