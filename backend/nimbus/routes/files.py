"""Files API routes: upload, download, listing, search and metadata edits."""
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from nimbus.config import settings
from nimbus.dependencies import get_file_repository
from nimbus.exceptions import NotFoundError, ValidationError
from nimbus.models.file_record import FileRecord
from nimbus.schemas.file import (
    DeleteRequest,
    DeleteResponse,
    DownloadRequest,
    FileListResponse,
    FileView,
    MoveRequest,
    MoveResponse,
    NameConflictRequest,
    NameConflictResponse,
    RecentFilesResponse,
    RenameRequest,
    TagsUpdate,
    UploadResponse,
)
from nimbus.services.archive_builder import ArchiveBuilder
from nimbus.services.file_repository import FileRepository, parse_id
from nimbus.services.file_storage import FileStorageService, get_file_storage
from nimbus.services.file_types import content_type_for, parse_tags_field
from nimbus.services.upload_ingestor import UploadIngestor, UploadOptions

router = APIRouter(prefix="/api/files", tags=["files"])

# folderId, isFolderUpload, tags and friends on top of one path field per file
FORM_EXTRA_FIELDS = 16

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _form_text(form, key: str) -> str:
    value = form.get(key)
    return value.strip() if isinstance(value, str) else ""


@router.post("/upload")
async def upload_files(
    request: Request,
    repo: FileRepository = Depends(get_file_repository),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Upload one or more files, optionally as a directory tree."""
    try:
        form = await request.form(
            max_files=settings.MAX_UPLOAD_FILES,
            max_fields=settings.MAX_UPLOAD_FILES + FORM_EXTRA_FIELDS,
        )
    except StarletteHTTPException as e:
        raise ValidationError(f"Could not read upload form: {e.detail}") from e
    except MultiPartException as e:
        raise ValidationError(f"Could not read upload form: {e.message}") from e
    uploads = [item for item in form.getlist("file") if isinstance(item, UploadFile)]
    if not uploads:
        raise ValidationError("No files uploaded")

    folder_raw = _form_text(form, "folderId")
    is_folder_upload = _form_text(form, "isFolderUpload").lower() == "true"
    tags = parse_tags_field(_form_text(form, "tags") or _form_text(form, "withTags"))

    relative_paths: dict[int, str] = {}
    for index, upload in enumerate(uploads):
        path = _form_text(form, f"path_{index}") or _form_text(form, f"paths_{index}")
        if not path and is_folder_upload and upload.filename and "/" in upload.filename:
            path = upload.filename
        if path:
            relative_paths[index] = path

    options = UploadOptions(
        target_folder_id=parse_id(folder_raw, "folderId") if folder_raw else None,
        is_directory_upload=is_folder_upload,
        relative_paths=relative_paths,
        tags=tags,
    )
    result = await UploadIngestor(repo, storage).ingest(uploads, options)

    response = UploadResponse(
        success=not result.all_failed,
        files_processed=result.total_requested,
        files_successful=result.total_succeeded,
        files=result.results,
        file=result.first_success,
        error="All files failed to upload" if result.all_failed else None,
    )
    return JSONResponse(
        status_code=500 if result.all_failed else 200,
        content=response.to_wire(),
    )


async def _raw_file_response(
    record: FileRecord,
    storage: FileStorageService,
    disposition: str,
) -> FileResponse:
    if record.is_folder:
        raise ValidationError(f'"{record.name}" is a folder')
    if not await storage.exists(record.filename):
        raise NotFoundError(f"Content missing for {record.name}")
    return FileResponse(
        path=storage.path_for(record.filename),
        filename=record.name,
        media_type=content_type_for(record.type, record.name),
        content_disposition_type=disposition,
        headers=NO_CACHE_HEADERS,
    )


async def _download(
    repo: FileRepository,
    storage: FileStorageService,
    raw_ids: list[str],
    raw_folder_id: Optional[str],
):
    file_ids = [parse_id(v, "fileId") for v in raw_ids if v and v.strip()]
    folder_id = parse_id(raw_folder_id, "folderId") if raw_folder_id else None
    if not file_ids and folder_id is None:
        raise ValidationError("No files specified for download")

    if folder_id is None and len(file_ids) == 1:
        record = await repo.require(file_ids[0])
        if not record.is_folder:
            return await _raw_file_response(record, storage, "attachment")

    handle = await ArchiveBuilder(repo, storage).build(file_ids, folder_id=folder_id)
    return FileResponse(
        path=handle.path,
        filename=handle.file_name,
        media_type="application/zip",
        headers=NO_CACHE_HEADERS,
        background=BackgroundTask(handle.cleanup),
    )


@router.get("/download")
async def download_get(
    file_ids: Optional[str] = Query(None, alias="fileIds"),
    folder_id: Optional[str] = Query(None, alias="folderId"),
    repo: FileRepository = Depends(get_file_repository),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Download one file raw, or a folder / several files as a ZIP."""
    ids = file_ids.split(",") if file_ids else []
    return await _download(repo, storage, ids, folder_id)


@router.post("/download")
async def download_post(
    body: DownloadRequest,
    repo: FileRepository = Depends(get_file_repository),
    storage: FileStorageService = Depends(get_file_storage),
):
    if body.is_folder and len(body.file_ids) == 1:
        return await _download(repo, storage, [], body.file_ids[0])
    return await _download(repo, storage, body.file_ids, None)


@router.get("", response_model=FileListResponse)
async def list_files(
    folder_id: Optional[UUID] = Query(None, alias="folderId"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    repo: FileRepository = Depends(get_file_repository),
):
    """Direct children of a folder (root when omitted), folders first."""
    if folder_id is not None:
        await repo.require_folder(folder_id)
    records = await repo.list_children(folder_id, limit=limit, offset=offset)
    total = await repo.count_children(folder_id)
    return FileListResponse(items=[FileView.from_record(r) for r in records], total=total)


@router.get("/search", response_model=FileListResponse)
async def search_files(
    q: str = Query(""),
    mode: Literal["name", "tag"] = Query("name"),
    category: Optional[str] = Query(None, alias="type"),
    tags: Optional[str] = Query(None),
    include_folders: bool = Query(True, alias="includeFolders"),
    repo: FileRepository = Depends(get_file_repository),
):
    """Search by name substring or exact tag, filtered by category and tags."""
    records = await repo.search(
        query=q,
        mode=mode,
        category=category,
        tags=parse_tags_field(tags),
        include_folders=include_folders,
    )
    return FileListResponse(items=[FileView.from_record(r) for r in records], total=len(records))


@router.get("/recent", response_model=RecentFilesResponse)
async def recent_files(
    limit: int = Query(10, ge=1, le=50),
    repo: FileRepository = Depends(get_file_repository),
):
    """Most recently updated files, newest first."""
    records = await repo.recent(limit)
    return RecentFilesResponse(files=[FileView.from_record(r) for r in records])


@router.post("/check-name-conflicts", response_model=NameConflictResponse)
async def check_name_conflicts(
    body: NameConflictRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    """Names that would collide with existing items in the target folder."""
    if not body.file_names:
        raise ValidationError("No file names to check")
    folder_raw = (body.folder_id or "").strip()
    parent_id = None if folder_raw in ("", "root") else parse_id(folder_raw, "folderId")
    return NameConflictResponse(conflicts=await repo.name_conflicts(parent_id, body.file_names))


@router.post("/move", response_model=MoveResponse)
async def move_files(
    body: MoveRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    records = await repo.move(body.file_ids, body.target_folder_id)
    return MoveResponse(moved=len(records), files=[FileView.from_record(r) for r in records])


@router.post("/delete", response_model=DeleteResponse)
async def delete_files(
    body: DeleteRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    """Soft-delete files and folders, folders including everything inside."""
    if not body.file_ids:
        raise ValidationError("No files selected to delete")
    deleted = await repo.soft_delete_cascade(body.file_ids)
    if deleted == 0:
        raise NotFoundError("None of the selected files exist")
    return DeleteResponse(deleted=deleted)


@router.get("/{file_id}", response_model=FileView)
async def get_file(
    file_id: UUID,
    repo: FileRepository = Depends(get_file_repository),
):
    return FileView.from_record(await repo.require(file_id))


@router.get("/{file_id}/content")
async def get_file_content(
    file_id: UUID,
    repo: FileRepository = Depends(get_file_repository),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Serve a file's bytes inline (previews, <img> tags)."""
    record = await repo.require(file_id)
    return await _raw_file_response(record, storage, "inline")


@router.patch("/{file_id}/rename", response_model=FileView)
async def rename_file(
    file_id: UUID,
    body: RenameRequest,
    repo: FileRepository = Depends(get_file_repository),
):
    record = await repo.rename(file_id, body.name, tags=body.tags)
    return FileView.from_record(record)


@router.put("/{file_id}/tags", response_model=FileView)
async def update_tags(
    file_id: UUID,
    body: TagsUpdate,
    repo: FileRepository = Depends(get_file_repository),
):
    record = await repo.update_tags(file_id, body.tags)
    return FileView.from_record(record)
