"""File/folder metadata repository.

Every method is scoped to one uploader and, unless stated otherwise, to
records that are not soft-deleted. Routes and services never build queries on
`FileRecord` themselves; they call the explicit methods here.
"""
import logging
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nimbus.config import settings
from nimbus.exceptions import ConflictError, NotFoundError, ValidationError
from nimbus.models.file_record import FileRecord
from nimbus.services.file_types import FOLDER_TYPE, classify, normalize_tags, sanitize_name

logger = logging.getLogger(__name__)


def parse_id(value, field: str = "id") -> uuid.UUID:
    """Parse a client-supplied id, raising ValidationError when malformed."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r}")


def file_url(file_id: uuid.UUID) -> str:
    return f"{settings.FILE_URL_PREFIX}/{file_id}/content"


def child_path(parent: FileRecord | None, name: str) -> str:
    """Logical path of a folder named `name` inside `parent`."""
    if parent is None or parent.path in ("", "/"):
        return f"/{name}"
    return f"{parent.path}/{name}"


def _contains_pattern(term: str) -> str:
    """LIKE pattern matching `term` literally anywhere in the value."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class FileRepository:
    """CRUD over FileRecord for a single uploader."""

    def __init__(self, db: AsyncSession, uploader_id: str):
        self.db = db
        self.uploader_id = uploader_id

    def _live(self):
        return select(FileRecord).where(
            FileRecord.uploader_id == self.uploader_id,
            FileRecord.is_deleted.is_(False),
        )

    @staticmethod
    def _parent_clause(parent_id: uuid.UUID | None):
        if parent_id is None:
            return FileRecord.parent_id.is_(None)
        return FileRecord.parent_id == parent_id

    # ── Lookups ──────────────────────────────────────────────────

    async def get(self, file_id: uuid.UUID) -> FileRecord | None:
        result = await self.db.execute(self._live().where(FileRecord.id == file_id))
        return result.scalar_one_or_none()

    async def require(self, file_id: uuid.UUID) -> FileRecord:
        record = await self.get(file_id)
        if not record:
            raise NotFoundError(f"File not found: {file_id}")
        return record

    async def require_folder(self, folder_id: uuid.UUID) -> FileRecord:
        record = await self.get(folder_id)
        if not record:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if not record.is_folder:
            raise ValidationError(f"Not a folder: {record.name}")
        return record

    async def _parent_or_root(self, parent_id: uuid.UUID | None) -> FileRecord | None:
        if parent_id is None:
            return None
        return await self.require_folder(parent_id)

    async def find_folder(self, name: str, parent_id: uuid.UUID | None) -> FileRecord | None:
        """Exact (name, parent) match among live folders."""
        result = await self.db.execute(
            self._live().where(
                FileRecord.is_folder.is_(True),
                FileRecord.name == name,
                self._parent_clause(parent_id),
            )
        )
        return result.scalars().first()

    async def find_sibling(
        self,
        name: str,
        parent_id: uuid.UUID | None,
        is_folder: bool,
        exclude_ids: set[uuid.UUID] | None = None,
    ) -> FileRecord | None:
        query = self._live().where(
            FileRecord.is_folder.is_(is_folder),
            FileRecord.name == name,
            self._parent_clause(parent_id),
        )
        if exclude_ids:
            query = query.where(FileRecord.id.not_in(list(exclude_ids)))
        result = await self.db.execute(query)
        return result.scalars().first()

    async def list_children(
        self,
        parent_id: uuid.UUID | None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileRecord]:
        """Direct children: folders first, then by name ascending."""
        query = (
            self._live()
            .where(self._parent_clause(parent_id))
            .order_by(FileRecord.is_folder.desc(), FileRecord.name.asc(), FileRecord.id.asc())
        )
        if limit is not None:
            query = query.limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_children(self, parent_id: uuid.UUID | None) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(FileRecord).where(
                FileRecord.uploader_id == self.uploader_id,
                FileRecord.is_deleted.is_(False),
                self._parent_clause(parent_id),
            )
        )
        return result.scalar_one()

    async def ancestors(self, file_id: uuid.UUID) -> list[FileRecord]:
        """Breadcrumb chain, root-first, ending with the record itself."""
        chain: list[FileRecord] = []
        seen: set[uuid.UUID] = set()
        current = await self.require(file_id)
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            current = await self.get(current.parent_id) if current.parent_id else None
        chain.reverse()
        return chain

    async def _is_ancestor(self, candidate_id: uuid.UUID, folder_id: uuid.UUID | None) -> bool:
        """True when `candidate_id` is `folder_id` or one of its ancestors."""
        seen: set[uuid.UUID] = set()
        current_id = folder_id
        while current_id is not None and current_id not in seen:
            if current_id == candidate_id:
                return True
            seen.add(current_id)
            result = await self.db.execute(
                select(FileRecord.parent_id).where(
                    FileRecord.id == current_id,
                    FileRecord.uploader_id == self.uploader_id,
                )
            )
            current_id = result.scalar_one_or_none()
        return False

    # ── Creation ─────────────────────────────────────────────────

    async def _commit_new(self, record: FileRecord) -> FileRecord:
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            kind = "Folder" if record.is_folder else "File"
            raise ConflictError(f'{kind} "{record.name}" already exists') from e
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(record)
        return record

    async def create_folder(
        self,
        name: str,
        parent_id: uuid.UUID | None,
        tags: list[str] | None = None,
    ) -> FileRecord:
        clean_name = sanitize_name(name)
        if not clean_name:
            raise ValidationError("Folder name cannot be empty")

        parent = await self._parent_or_root(parent_id)
        if await self.find_sibling(clean_name, parent_id, is_folder=True):
            raise ConflictError(f'Folder "{clean_name}" already exists')

        folder = FileRecord(
            id=uuid.uuid4(),
            name=clean_name,
            filename=None,
            path=child_path(parent, clean_name),
            type=FOLDER_TYPE,
            size=0,
            is_folder=True,
            parent_id=parent_id,
            uploader_id=self.uploader_id,
            tags=normalize_tags(tags),
        )
        folder = await self._commit_new(folder)
        logger.info(f"Created folder {folder.path} ({folder.id}) for {self.uploader_id}")
        return folder

    async def create_file(
        self,
        name: str,
        filename: str,
        mime_type: str,
        size: int,
        parent_id: uuid.UUID | None,
        tags: list[str] | None = None,
    ) -> FileRecord:
        clean_name = sanitize_name(name)
        if not clean_name:
            raise ValidationError("File name cannot be empty")

        parent = await self._parent_or_root(parent_id)
        if await self.find_sibling(clean_name, parent_id, is_folder=False):
            raise ConflictError(f'File "{clean_name}" already exists in this folder')

        file_id = uuid.uuid4()
        record = FileRecord(
            id=file_id,
            name=clean_name,
            filename=filename,
            path=parent.path if parent else "/",
            type=mime_type,
            size=size,
            is_folder=False,
            parent_id=parent_id,
            uploader_id=self.uploader_id,
            tags=normalize_tags(tags),
            url=file_url(file_id),
        )
        return await self._commit_new(record)

    # ── Mutation ─────────────────────────────────────────────────

    async def rename(
        self,
        file_id: uuid.UUID,
        new_name: str,
        tags: list[str] | None = None,
    ) -> FileRecord:
        """Change the display name (and optionally tags). The blob is untouched."""
        record = await self.require(file_id)
        clean_name = sanitize_name(new_name)
        if not clean_name:
            raise ValidationError("Name cannot be empty")

        if clean_name != record.name and await self.find_sibling(
            clean_name, record.parent_id, record.is_folder, exclude_ids={record.id}
        ):
            raise ConflictError(f'"{clean_name}" already exists in this folder')

        old_name = record.name
        record.name = clean_name
        if tags is not None:
            record.tags = normalize_tags(tags)
        if record.is_folder:
            parent = await self.get(record.parent_id) if record.parent_id else None
            record.path = child_path(parent, clean_name)
        else:
            record.url = file_url(record.id)
        await self._commit_existing([record])
        logger.info(f"Renamed {old_name!r} -> {clean_name!r} ({record.id})")
        return record

    async def update_tags(self, file_id: uuid.UUID, tags: list[str]) -> FileRecord:
        record = await self.require(file_id)
        record.tags = normalize_tags(tags)
        await self._commit_existing([record])
        return record

    async def move(
        self,
        file_ids: list[uuid.UUID],
        target_parent_id: uuid.UUID | None,
    ) -> list[FileRecord]:
        """Reparent records after validating target, cycles and name clashes."""
        if not file_ids:
            raise ValidationError("No files selected to move")

        target = await self._parent_or_root(target_parent_id)
        ids = list(dict.fromkeys(file_ids))
        records = [await self.require(file_id) for file_id in ids]
        moving = {r.id for r in records}

        for record in records:
            if record.is_folder and await self._is_ancestor(record.id, target_parent_id):
                raise ConflictError(
                    f'Cannot move folder "{record.name}" into itself or one of its subfolders'
                )

        claimed: set[tuple[str, bool]] = set()
        for record in records:
            key = (record.name, record.is_folder)
            if key in claimed:
                raise ConflictError(f'Two selected items are both named "{record.name}"')
            claimed.add(key)
            if record.parent_id == target_parent_id:
                continue
            if await self.find_sibling(
                record.name, target_parent_id, record.is_folder, exclude_ids=moving
            ):
                raise ConflictError(f'"{record.name}" already exists in the target folder')

        for record in records:
            record.parent_id = target_parent_id
            if record.is_folder:
                record.path = child_path(target, record.name)
            else:
                record.path = target.path if target else "/"
        await self._commit_existing(records)
        logger.info(
            f"Moved {len(records)} item(s) to {target.path if target else '/'} for {self.uploader_id}"
        )
        return records

    async def soft_delete_cascade(self, file_ids: list[uuid.UUID]) -> int:
        """Mark the given records and every descendant deleted. Returns the count."""
        if not file_ids:
            return 0
        result = await self.db.execute(
            select(FileRecord.id, FileRecord.is_folder).where(
                FileRecord.uploader_id == self.uploader_id,
                FileRecord.is_deleted.is_(False),
                FileRecord.id.in_(file_ids),
            )
        )
        rows = result.all()
        if not rows:
            return 0

        to_delete = {row.id for row in rows}
        frontier = [row.id for row in rows if row.is_folder]
        while frontier:
            result = await self.db.execute(
                select(FileRecord.id).where(
                    FileRecord.uploader_id == self.uploader_id,
                    FileRecord.is_deleted.is_(False),
                    FileRecord.parent_id.in_(frontier),
                )
            )
            children = [cid for cid in result.scalars().all() if cid not in to_delete]
            to_delete.update(children)
            frontier = children

        try:
            await self.db.execute(
                update(FileRecord)
                .where(
                    FileRecord.uploader_id == self.uploader_id,
                    FileRecord.id.in_(list(to_delete)),
                )
                .values(is_deleted=True, deleted_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Soft-deleted {len(to_delete)} record(s) for {self.uploader_id}")
        return len(to_delete)

    async def _commit_existing(self, records: list[FileRecord]) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("A file or folder with that name already exists") from e
        except Exception:
            await self.db.rollback()
            raise
        for record in records:
            await self.db.refresh(record)

    # ── Search ───────────────────────────────────────────────────

    async def search(
        self,
        query: str = "",
        mode: str = "name",
        category: str | None = None,
        tags: list[str] | None = None,
        include_folders: bool = True,
        limit: int | None = None,
    ) -> list[FileRecord]:
        """Name or tag search with optional category/tag filters.

        Name mode is a case-insensitive substring match; tag mode matches a
        whole tag. Folders come first, then most recently updated.
        """
        limit = limit or settings.MAX_SEARCH_RESULTS
        term = (query or "").strip()
        stmt = self._live()
        if mode == "name" and term:
            stmt = stmt.where(FileRecord.name.ilike(_contains_pattern(term), escape="\\"))
        if not include_folders:
            stmt = stmt.where(FileRecord.is_folder.is_(False))
        stmt = stmt.order_by(FileRecord.is_folder.desc(), FileRecord.updated_at.desc())
        result = await self.db.execute(stmt)

        wanted_tags = set(normalize_tags(tags))
        matches: list[FileRecord] = []
        # JSON tag membership is not portable across backends, so tag
        # filters are applied here.
        for record in result.scalars():
            record_tags = set(record.tags or [])
            if mode == "tag" and term and term not in record_tags:
                continue
            if wanted_tags and not (wanted_tags & record_tags):
                continue
            if category and classify(record.type, record.extension).value != category:
                continue
            matches.append(record)
            if len(matches) >= limit:
                break
        return matches

    async def name_conflicts(self, parent_id: uuid.UUID | None, names: list[str]) -> list[str]:
        """Requested names that already exist (as file or folder) in the folder.

        Names are compared the way they would be stored, after sanitizing.
        """
        if parent_id is not None:
            await self.require_folder(parent_id)
        wanted = {name: sanitize_name(name) for name in names if isinstance(name, str)}
        wanted = {name: clean for name, clean in wanted.items() if clean}
        if not wanted:
            return []
        result = await self.db.execute(
            select(FileRecord.name).where(
                FileRecord.uploader_id == self.uploader_id,
                FileRecord.is_deleted.is_(False),
                self._parent_clause(parent_id),
                FileRecord.name.in_(list(set(wanted.values()))),
            )
        )
        taken = set(result.scalars().all())
        return [name for name, clean in wanted.items() if clean in taken]

    async def recent(self, limit: int = 10) -> list[FileRecord]:
        """Most recently updated files; folders are left out."""
        result = await self.db.execute(
            self._live()
            .where(FileRecord.is_folder.is_(False))
            .order_by(FileRecord.updated_at.desc(), FileRecord.name.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Tags ─────────────────────────────────────────────────────

    async def list_tags(self) -> list[tuple[str, int]]:
        """Distinct tags on live records with how many records carry each."""
        result = await self.db.execute(
            select(FileRecord.tags).where(
                FileRecord.uploader_id == self.uploader_id,
                FileRecord.is_deleted.is_(False),
            )
        )
        counts: Counter[str] = Counter()
        for tags in result.scalars():
            counts.update(set(tags or []))
        return sorted(counts.items())

    async def add_tag(self, tag: str, file_ids: list[uuid.UUID]) -> int:
        """Add one tag to many records. Unknown ids are skipped. Returns records changed."""
        clean_tag = (tag or "").strip()
        if not clean_tag:
            raise ValidationError("Tag cannot be empty")
        if not file_ids:
            raise ValidationError("No files selected to tag")

        changed: list[FileRecord] = []
        for file_id in dict.fromkeys(file_ids):
            record = await self.get(file_id)
            if record is None or clean_tag in (record.tags or []):
                continue
            record.tags = [*(record.tags or []), clean_tag]
            changed.append(record)
        if changed:
            await self._commit_existing(changed)
        logger.info(f"Tagged {len(changed)} record(s) with {clean_tag!r} for {self.uploader_id}")
        return len(changed)

    async def remove_tag(self, tag: str, file_ids: list[uuid.UUID] | None = None) -> int:
        """Remove a tag from the given records, or from every record when None."""
        clean_tag = (tag or "").strip()
        if not clean_tag:
            raise ValidationError("Tag cannot be empty")

        if file_ids is None:
            result = await self.db.execute(self._live())
            candidates = list(result.scalars().all())
        else:
            if not file_ids:
                raise ValidationError("No files selected")
            candidates = [r for r in [await self.get(i) for i in dict.fromkeys(file_ids)] if r]

        changed: list[FileRecord] = []
        for record in candidates:
            if clean_tag in (record.tags or []):
                record.tags = [t for t in record.tags if t != clean_tag]
                changed.append(record)
        if changed:
            await self._commit_existing(changed)
        logger.info(f"Removed tag {clean_tag!r} from {len(changed)} record(s) for {self.uploader_id}")
        return len(changed)

    # ── Stats ────────────────────────────────────────────────────

    async def stats(self) -> dict:
        """Counts and bytes of the uploader's live records, per category."""
        result = await self.db.execute(self._live())
        by_category: dict[str, dict[str, int]] = defaultdict(lambda: {"count": 0, "bytes": 0})
        file_count = folder_count = total_bytes = 0
        for record in result.scalars():
            if record.is_folder:
                folder_count += 1
                continue
            category = classify(record.type, record.extension).value
            size = record.size or 0
            file_count += 1
            total_bytes += size
            by_category[category]["count"] += 1
            by_category[category]["bytes"] += size
        return {
            "file_count": file_count,
            "folder_count": folder_count,
            "total_bytes": total_bytes,
            "by_category": dict(by_category),
        }
