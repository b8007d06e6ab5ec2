"""Domain errors. Each carries the HTTP status the API layer renders it with."""


class NimbusError(Exception):
    """Base class for errors that surface to API callers."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NimbusError):
    """Malformed or missing request input (no files, no ids, invalid name)."""
    status_code = 400


class NotFoundError(NimbusError):
    """Record missing, soft-deleted, or owned by someone else."""
    status_code = 404


class ConflictError(NimbusError):
    """Sibling name collision or folder cycle. Raised before any mutation."""
    status_code = 409


class StorageError(NimbusError):
    """Blob I/O failure (disk full, permission denied, path escape)."""
    status_code = 500


def safe_error_message(e: Exception, fallback: str = "Unexpected error") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions produce an empty str(e). This helper falls back to the
    exception class name.
    """
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg
