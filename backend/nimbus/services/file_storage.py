"""File storage abstraction over a flat local blob directory."""
import logging
import re
import time
import uuid
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from nimbus.config import settings
from nimbus.exceptions import StorageError

logger = logging.getLogger(__name__)

_EXT_CHARS = re.compile(r"[^A-Za-z0-9]")


def generate_unique_filename(original_name: str) -> str:
    """Timestamp + random suffix + the original (sanitized) extension."""
    ext = _EXT_CHARS.sub("", Path(original_name).suffix)[:16].lower()
    stamp = int(time.time() * 1000)
    suffix = uuid.uuid4().hex[:8]
    return f"{stamp}-{suffix}.{ext}" if ext else f"{stamp}-{suffix}"


class FileStorageService:
    """Handles blob read/write under one root directory.

    Physical names are generated here and never change afterwards. A `temp/`
    subdirectory holds transient archives.
    """

    def __init__(self, base_path: str | Path | None = None):
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH).resolve()
        self.temp_path = self.base_path / settings.TEMP_DIR_NAME
        self.chunk_size = settings.STREAM_CHUNK_SIZE

    def path_for(self, name: str | Path) -> Path:
        """Resolve a name relative to the root; refuses paths that escape it."""
        path = (self.base_path / name).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise StorageError(f"Path escapes storage root: {name}")
        return path

    async def ensure_dir(self, relative_dir: str | Path = "") -> Path:
        """Recursive mkdir, idempotent."""
        path = self.path_for(relative_dir)
        try:
            await aiofiles.os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create directory {relative_dir}: {e}") from e
        return path

    async def write(self, file_bytes: bytes, suggested_name: str) -> str:
        """Save bytes under a new unique name. Returns the physical name."""
        filename = generate_unique_filename(suggested_name)
        target = self.path_for(filename)
        partial = target.with_name(target.name + ".part")
        await self.ensure_dir()
        try:
            async with aiofiles.open(partial, "wb") as f:
                await f.write(file_bytes)
                await f.flush()
            await aiofiles.os.replace(partial, target)
        except OSError as e:
            if await aiofiles.os.path.exists(partial):
                await aiofiles.os.remove(partial)
            raise StorageError(f"Could not write blob for {suggested_name}: {e}") from e
        logger.debug(f"Stored blob {filename} ({len(file_bytes)} bytes)")
        return filename

    async def exists(self, filename: str | None) -> bool:
        if not filename:
            return False
        return await aiofiles.os.path.isfile(self.path_for(filename))

    async def stream(self, filename: str) -> AsyncIterator[bytes]:
        """Yield the blob's bytes in chunks."""
        path = self.path_for(filename)
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise StorageError(f"Could not read blob {filename}: {e}") from e

    async def read_bytes(self, filename: str) -> bytes:
        """Read a whole blob into memory."""
        try:
            async with aiofiles.open(self.path_for(filename), "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"Could not read blob {filename}: {e}") from e

    async def delete(self, filename: str) -> None:
        """Delete a blob. Missing blobs are logged, not raised."""
        path = self.path_for(filename)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.info(f"Blob {filename} already gone, nothing to delete")
        except OSError as e:
            raise StorageError(f"Could not delete blob {filename}: {e}") from e

    # ── Temp area for archives ───────────────────────────────────

    async def create_temp_path(self, suffix: str = "") -> Path:
        """Reserve a unique path inside temp/. The file is not created."""
        await self.ensure_dir(settings.TEMP_DIR_NAME)
        return self.temp_path / f"{uuid.uuid4().hex}{suffix}"

    async def delete_temp(self, path: str | Path) -> None:
        """Remove a temp file; idempotent."""
        path = Path(path)
        if self.temp_path not in path.resolve().parents:
            raise StorageError(f"Not a temp file: {path}")
        try:
            await aiofiles.os.remove(path)
            logger.debug(f"Removed temp file {path.name}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temp file {path}: {e}")

    async def purge_temp(self, max_age_seconds: int) -> int:
        """Remove temp files older than `max_age_seconds`. Returns the count."""
        if not await aiofiles.os.path.isdir(self.temp_path):
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for entry in await aiofiles.os.scandir(self.temp_path):
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    await aiofiles.os.remove(entry.path)
                    removed += 1
            except OSError as e:
                logger.warning(f"Could not purge temp file {entry.path}: {e}")
        if removed:
            logger.info(f"Purged {removed} stale temp file(s)")
        return removed


file_storage = FileStorageService()


def get_file_storage() -> FileStorageService:
    """FastAPI dependency returning the shared blob store."""
    return file_storage
