"""Multi-file upload ingestion.

Each uploaded file is written to the blob store and recorded in the metadata
store independently. A failure on one file becomes an error entry in the
result; the remaining files are still processed.
"""
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Protocol

from nimbus.exceptions import NimbusError, StorageError, safe_error_message
from nimbus.schemas.file import FileErrorView, FileView
from nimbus.services.file_repository import FileRepository
from nimbus.services.file_storage import FileStorageService
from nimbus.services.file_types import guess_mime_type, sanitize_name, split_relative_path
from nimbus.services.folder_materializer import FolderMaterializer, parent_prefix

logger = logging.getLogger(__name__)


class UploadedFile(Protocol):
    filename: str | None
    content_type: str | None

    async def read(self, size: int = -1) -> bytes: ...


class FileUploadState(str, Enum):
    PENDING = "pending"
    WRITING = "writing"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadOptions:
    target_folder_id: uuid.UUID | None = None
    is_directory_upload: bool = False
    relative_paths: dict[int, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)


@dataclass
class UploadResult:
    total_requested: int
    total_succeeded: int
    results: list[FileView | FileErrorView]

    @property
    def all_failed(self) -> bool:
        return self.total_requested > 0 and self.total_succeeded == 0

    @property
    def first_success(self) -> FileView | None:
        return next((r for r in self.results if isinstance(r, FileView)), None)


class UploadIngestor:
    def __init__(
        self,
        repo: FileRepository,
        storage: FileStorageService,
        materializer: FolderMaterializer | None = None,
    ):
        self.repo = repo
        self.storage = storage
        self.materializer = materializer or FolderMaterializer(repo, storage)

    async def ingest(self, files: list[UploadedFile], options: UploadOptions) -> UploadResult:
        if options.target_folder_id is not None:
            await self.repo.require_folder(options.target_folder_id)

        folder_map: dict[str, uuid.UUID] = {}
        if options.is_directory_upload and options.relative_paths:
            folder_map = await self.materializer.materialize(
                list(options.relative_paths.values()),
                options.target_folder_id,
                tags=options.tags,
            )

        results: list[FileView | FileErrorView] = []
        succeeded = 0
        for index, upload in enumerate(files):
            relative_path = options.relative_paths.get(index)
            outcome = await self._ingest_one(upload, relative_path, folder_map, options)
            if isinstance(outcome, FileView):
                succeeded += 1
            results.append(outcome)

        logger.info(
            f"Upload for {self.repo.uploader_id}: {succeeded}/{len(files)} file(s) stored"
        )
        return UploadResult(
            total_requested=len(files),
            total_succeeded=succeeded,
            results=results,
        )

    def _destination(
        self,
        relative_path: str | None,
        folder_map: dict[str, uuid.UUID],
        options: UploadOptions,
    ) -> uuid.UUID | None:
        if options.is_directory_upload and relative_path:
            prefix = parent_prefix(relative_path)
            if prefix is not None:
                return folder_map.get(prefix, options.target_folder_id)
        return options.target_folder_id

    @staticmethod
    def _display_name(upload: UploadedFile, relative_path: str | None) -> str:
        segments = split_relative_path(relative_path)
        if segments:
            return sanitize_name(segments[-1])
        # Browsers on Windows may send a full path as the filename.
        raw = (upload.filename or "").replace("\\", "/")
        return sanitize_name(PurePath(raw).name)

    async def _ingest_one(
        self,
        upload: UploadedFile,
        relative_path: str | None,
        folder_map: dict[str, uuid.UUID],
        options: UploadOptions,
    ) -> FileView | FileErrorView:
        name = self._display_name(upload, relative_path) or "untitled"
        state = FileUploadState.PENDING
        filename: str | None = None
        try:
            parent_id = self._destination(relative_path, folder_map, options)

            state = FileUploadState.WRITING
            logger.debug(f"{name}: {state.value}")
            content = await upload.read()
            filename = await self.storage.write(content, name)

            state = FileUploadState.PERSISTING
            logger.debug(f"{name}: {state.value}")
            record = await self.repo.create_file(
                name=name,
                filename=filename,
                mime_type=guess_mime_type(name, upload.content_type),
                size=len(content),
                parent_id=parent_id,
                tags=options.tags,
            )
            view = FileView.from_record(record)
        except Exception as e:
            failed_at = state
            state = FileUploadState.FAILED
            if isinstance(e, NimbusError):
                logger.warning(f"Upload of {name} failed while {failed_at.value}: {e}")
            else:
                logger.exception(f"Upload of {name} failed while {failed_at.value}")
            if filename is not None and failed_at is FileUploadState.PERSISTING:
                await self._discard_blob(filename)
            return FileErrorView(name=name, error_message=safe_error_message(e, "Upload failed"))

        state = FileUploadState.SUCCEEDED
        logger.debug(f"{name}: {state.value}")
        return view

    async def _discard_blob(self, filename: str) -> None:
        try:
            await self.storage.delete(filename)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned blob {filename}: {e}")
