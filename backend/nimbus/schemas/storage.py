"""Storage usage schemas."""
from nimbus.schemas.base import CamelModel


class CategoryUsage(CamelModel):
    count: int = 0
    bytes: int = 0


class StorageInfoResponse(CamelModel):
    file_count: int
    folder_count: int
    total_bytes: int
    by_category: dict[str, CategoryUsage] = {}
