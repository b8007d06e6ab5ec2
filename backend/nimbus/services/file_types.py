"""File naming and type helpers.

`classify` is the only place that maps MIME types and extensions to a display
category. Upload, search and the API views all go through it.
"""
import json
import mimetypes
import re
from enum import Enum

FOLDER_TYPE = "folder"
DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_NAME_LENGTH = 255

_UNSAFE_NAME_CHARS = re.compile(r'[/\\?%*:|"<>\x00-\x1f]')


class Category(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    CODE = "code"
    FOLDER = "folder"
    OTHER = "other"


# Checked in order; first match wins. MIME prefixes, then extensions.
_CATEGORY_RULES: list[tuple[Category, tuple[str, ...], frozenset[str]]] = [
    (
        Category.IMAGE,
        ("image/",),
        frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"}),
    ),
    (
        Category.VIDEO,
        ("video/",),
        frozenset({"mp4", "avi", "mov", "wmv", "flv", "mkv", "webm"}),
    ),
    (
        Category.AUDIO,
        ("audio/",),
        frozenset({"mp3", "wav", "ogg", "flac", "aac", "m4a"}),
    ),
    (
        Category.CODE,
        ("text/javascript", "application/javascript", "application/json",
         "text/html", "text/css", "text/xml", "application/xml", "text/x-python"),
        frozenset({
            "js", "ts", "jsx", "tsx", "json", "html", "css", "scss", "less",
            "xml", "c", "cpp", "h", "py", "java", "rb", "php", "go", "rs",
            "sql", "sh", "bat", "ps1", "yaml", "yml", "toml",
        }),
    ),
    (
        Category.DOCUMENT,
        ("application/pdf", "application/msword",
         "application/vnd.openxmlformats-officedocument",
         "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
         "application/vnd.oasis.opendocument", "application/rtf", "text/"),
        frozenset({
            "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
            "txt", "rtf", "odt", "ods", "odp", "csv", "md",
        }),
    ),
    (
        Category.ARCHIVE,
        ("application/zip", "application/x-rar-compressed",
         "application/x-7z-compressed", "application/x-tar", "application/gzip"),
        frozenset({"zip", "rar", "7z", "tar", "gz", "bz2", "xz"}),
    ),
]


def classify(mime_type: str | None, extension: str | None) -> Category:
    """Map a MIME type and/or file extension to a display category."""
    mime = (mime_type or "").lower().strip()
    ext = (extension or "").lower().lstrip(".")

    if mime in (FOLDER_TYPE, "directory"):
        return Category.FOLDER

    # Extension decides first for specific types that share a generic MIME
    # prefix (e.g. text/x-python vs text/plain).
    for category, _, extensions in _CATEGORY_RULES:
        if ext and ext in extensions:
            return category
    if mime and mime != DEFAULT_MIME_TYPE:
        for category, prefixes, _ in _CATEGORY_RULES:
            if any(mime.startswith(p) for p in prefixes):
                return category
    return Category.OTHER


def sanitize_name(name: str) -> str:
    """Replace path separators and unsafe characters, trim whitespace."""
    cleaned = _UNSAFE_NAME_CHARS.sub("-", name or "").strip()
    if cleaned in (".", ".."):
        return ""
    return cleaned[:MAX_NAME_LENGTH]


def split_relative_path(relative_path: str | None) -> list[str]:
    """Split a client-supplied relative path into clean segments."""
    if not relative_path:
        return []
    parts = re.split(r"[/\\]+", relative_path)
    return [p for p in parts if p and p not in (".", "..")]


def normalize_tags(tags) -> list[str]:
    """Deduplicate tags, dropping blanks. First occurrence order is kept."""
    if not tags:
        return []
    seen: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def parse_tags_field(raw: str | None) -> list[str]:
    """Parse a form tags field: a JSON array string or a comma-joined list."""
    if not raw:
        return []
    raw = raw.strip()
    if raw.startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return normalize_tags(value)
    return normalize_tags(raw.split(","))


def guess_mime_type(name: str, declared: str | None = None) -> str:
    """Use the client's declared type unless it is missing or generic."""
    if declared and declared != DEFAULT_MIME_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_MIME_TYPE


def content_type_for(stored_type: str | None, name: str) -> str:
    """Pick a Content-Type header for serving a stored file."""
    if stored_type and "/" in stored_type:
        return stored_type
    return guess_mime_type(name)
