"""Create folder records implied by the relative paths of a directory upload."""
import logging
import uuid
from pathlib import PurePosixPath

from sqlalchemy.exc import SQLAlchemyError

from nimbus.exceptions import ConflictError, NimbusError
from nimbus.services.file_repository import FileRepository
from nimbus.services.file_storage import FileStorageService
from nimbus.services.file_types import sanitize_name, split_relative_path

logger = logging.getLogger(__name__)

FOLDERS_DIR = "folders"


def directory_prefixes(relative_paths: list[str]) -> list[str]:
    """Every directory prefix implied by the paths, parents before children.

    `a/b/c/f.txt` gives `a`, `a/b`, `a/b/c`. A bare filename gives nothing.
    """
    prefixes: set[str] = set()
    for relative_path in relative_paths:
        segments = split_relative_path(relative_path)
        for depth in range(1, len(segments)):
            prefixes.add("/".join(segments[:depth]))
    return sorted(prefixes, key=lambda p: (p.count("/"), p))


def parent_prefix(relative_path: str) -> str | None:
    """Directory part of a relative path, or None when it has no directory."""
    segments = split_relative_path(relative_path)
    if len(segments) < 2:
        return None
    return "/".join(segments[:-1])


class FolderMaterializer:
    def __init__(self, repo: FileRepository, storage: FileStorageService):
        self.repo = repo
        self.storage = storage

    def _mirror_dir(self, folder_path: str) -> PurePosixPath:
        user_dir = sanitize_name(self.repo.uploader_id) or "anonymous"
        return PurePosixPath(FOLDERS_DIR, user_dir, folder_path.lstrip("/"))

    async def _find_or_create(
        self,
        name: str,
        parent_id: uuid.UUID | None,
        tags: list[str] | None,
    ):
        # Stored names are sanitized, so lookups must be too.
        name = sanitize_name(name)
        existing = await self.repo.find_folder(name, parent_id)
        if existing:
            return existing, False
        try:
            return await self.repo.create_folder(name, parent_id, tags=tags), True
        except ConflictError:
            # Another request created it between our lookup and insert.
            existing = await self.repo.find_folder(name, parent_id)
            if existing is None:
                raise
            return existing, False

    async def materialize(
        self,
        relative_paths: list[str],
        root_folder_id: uuid.UUID | None,
        tags: list[str] | None = None,
    ) -> dict[str, uuid.UUID]:
        """Find or create a folder for every directory prefix.

        New folders get `tags`; existing ones are reused untouched.
        Returns prefix -> folder id. A prefix that cannot be created is
        logged and left out; its children then attach to `root_folder_id`.
        """
        mapping: dict[str, uuid.UUID] = {}
        created = 0

        for prefix in directory_prefixes(relative_paths):
            parent_part, _, folder_name = prefix.rpartition("/")
            parent_id = mapping.get(parent_part, root_folder_id) if parent_part else root_folder_id
            try:
                folder, was_created = await self._find_or_create(folder_name, parent_id, tags)
            except (NimbusError, SQLAlchemyError) as e:
                logger.warning(f"Skipping folder {prefix!r}: {e}")
                continue
            mapping[prefix] = folder.id
            created += int(was_created)

            try:
                await self.storage.ensure_dir(self._mirror_dir(folder.path))
            except NimbusError as e:
                logger.warning(f"Could not mirror directory for {prefix!r}: {e}")

        if mapping:
            logger.info(
                f"Materialized {len(mapping)} folder(s) ({created} new) for {self.repo.uploader_id}"
            )
        return mapping
