"""On-demand ZIP archives for folder and multi-file downloads.

Archives are written to the blob store's temp area and removed by the caller
through `ArchiveHandle.cleanup()` once the response has been sent.
"""
import asyncio
import logging
import shutil
import time
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from nimbus.config import settings
from nimbus.exceptions import NotFoundError, StorageError
from nimbus.models.file_record import FileRecord
from nimbus.services.file_repository import FileRepository
from nimbus.services.file_storage import FileStorageService

logger = logging.getLogger(__name__)

EMPTY_PLACEHOLDER = ".empty"


@dataclass
class ArchiveHandle:
    file_name: str
    path: Path
    size: int
    storage: FileStorageService

    async def cleanup(self) -> None:
        await self.storage.delete_temp(self.path)


def _suffixed(name: str, n: int) -> str:
    path = PurePosixPath(name)
    if path.suffix and path.stem:
        return f"{path.stem} ({n}){path.suffix}"
    return f"{name} ({n})"


class _ArchiveWriter:
    """Tracks entry names and counts while a ZipFile is being filled.

    Compression and ZIP bookkeeping run in worker threads. Each blob is first
    copied to a spool file in the temp area, so a read that fails partway
    never leaves a truncated entry behind.
    """

    def __init__(self, zf: zipfile.ZipFile, storage: FileStorageService):
        self.zf = zf
        self.storage = storage
        self.used: set[str] = set()
        self.entries = 0

    def claim(self, prefix: str, name: str, is_dir: bool) -> str:
        """Reserve an entry name under `prefix`, adding " (n)" on collision."""
        candidate, n = name, 1
        while True:
            entry = f"{prefix}{candidate}/" if is_dir else f"{prefix}{candidate}"
            if entry not in self.used:
                self.used.add(entry)
                return entry
            candidate = _suffixed(name, n)
            n += 1

    async def add_dir(self, entry: str) -> None:
        info = zipfile.ZipInfo(entry, time.localtime()[:6])
        info.external_attr = 0o40755 << 16
        await asyncio.to_thread(self.zf.writestr, info, b"")
        self.entries += 1

    async def add_empty_file(self, entry: str) -> None:
        info = zipfile.ZipInfo(entry, time.localtime()[:6])
        await asyncio.to_thread(self.zf.writestr, info, b"")
        self.entries += 1

    async def _spool(self, record: FileRecord) -> Path | None:
        """Copy a blob into the temp area. None when it cannot be read."""
        spool = await self.storage.create_temp_path(".spool")
        try:
            async with aiofiles.open(spool, "wb") as out:
                async for chunk in self.storage.stream(record.filename):
                    await out.write(chunk)
        except StorageError as e:
            logger.warning(f"Could not read blob for {record.name} ({record.id}): {e}")
            await self.storage.delete_temp(spool)
            return None
        except Exception:
            await self.storage.delete_temp(spool)
            raise
        return spool

    def _write_spooled(self, entry: str, spool: Path) -> None:
        info = zipfile.ZipInfo(entry, time.localtime()[:6])
        info.compress_type = self.zf.compression
        info.external_attr = 0o644 << 16
        with open(spool, "rb") as src, self.zf.open(info, "w") as dest:
            shutil.copyfileobj(src, dest, self.storage.chunk_size)

    async def add_blob(self, entry: str, record: FileRecord) -> bool:
        """Add a blob's bytes as `entry`. Returns False when it is unreadable."""
        spool = None
        if await self.storage.exists(record.filename):
            spool = await self._spool(record)
        else:
            logger.warning(f"Blob missing for {record.name} ({record.id}), skipping")
        if spool is None:
            self.used.discard(entry)
            return False
        try:
            await asyncio.to_thread(self._write_spooled, entry, spool)
        finally:
            await self.storage.delete_temp(spool)
        self.entries += 1
        return True


class ArchiveBuilder:
    def __init__(
        self,
        repo: FileRepository,
        storage: FileStorageService,
        compression_level: int | None = None,
    ):
        self.repo = repo
        self.storage = storage
        self.compression_level = (
            settings.ARCHIVE_COMPRESSION_LEVEL if compression_level is None else compression_level
        )

    async def build(
        self,
        file_ids: list[uuid.UUID],
        folder_id: uuid.UUID | None = None,
    ) -> ArchiveHandle:
        """Zip a folder's contents and/or a selection of files and folders."""
        root = await self.repo.require_folder(folder_id) if folder_id else None
        selection = await self._resolve_selection(file_ids, skip=folder_id)

        if root is not None and not selection:
            archive_name = f"{root.name}.zip"
        elif root is None and len(selection) == 1 and selection[0].is_folder:
            archive_name = f"{selection[0].name}.zip"
        else:
            archive_name = f"download_{int(time.time() * 1000)}.zip"

        temp_path = await self.storage.create_temp_path(".zip")
        zf = None
        try:
            zf = await asyncio.to_thread(
                zipfile.ZipFile,
                temp_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            )
            writer = _ArchiveWriter(zf, self.storage)
            if root is not None:
                await self._add_folder(writer, root.id, "")
            for record in selection:
                if record.is_folder:
                    await self._add_subfolder(writer, record, "")
                else:
                    entry = writer.claim("", record.name, is_dir=False)
                    await writer.add_blob(entry, record)
            await asyncio.to_thread(zf.close)
            if writer.entries == 0:
                raise NotFoundError("No downloadable files")
            size = (await aiofiles.os.stat(temp_path)).st_size
        except Exception:
            if zf is not None:
                await asyncio.to_thread(zf.close)
            await self.storage.delete_temp(temp_path)
            raise

        logger.info(f"Built archive {archive_name}: {writer.entries} entries, {size} bytes")
        return ArchiveHandle(file_name=archive_name, path=temp_path, size=size, storage=self.storage)

    async def _resolve_selection(
        self,
        file_ids: list[uuid.UUID],
        skip: uuid.UUID | None,
    ) -> list[FileRecord]:
        records = []
        for file_id in dict.fromkeys(file_ids):
            if file_id == skip:
                continue
            record = await self.repo.get(file_id)
            if record is None:
                logger.warning(f"Unknown file id {file_id} in download request, skipping")
                continue
            records.append(record)
        records.sort(key=lambda r: (not r.is_folder, r.name))
        return records

    async def _add_subfolder(self, writer: _ArchiveWriter, folder: FileRecord, prefix: str) -> int:
        entry = writer.claim(prefix, folder.name, is_dir=True)
        await writer.add_dir(entry)
        written = await self._add_folder(writer, folder.id, entry)
        if written == 0:
            await writer.add_empty_file(f"{entry}{EMPTY_PLACEHOLDER}")
        return written

    async def _add_folder(self, writer: _ArchiveWriter, folder_id: uuid.UUID, prefix: str) -> int:
        """Add a folder's children under `prefix`. Returns real files written."""
        written = 0
        for child in await self.repo.list_children(folder_id):
            if child.is_folder:
                written += await self._add_subfolder(writer, child, prefix)
                continue
            entry = writer.claim(prefix, child.name, is_dir=False)
            if await writer.add_blob(entry, child):
                written += 1
        return written
