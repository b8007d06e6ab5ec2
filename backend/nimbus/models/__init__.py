"""Import all models so SQLAlchemy metadata knows about them."""
from nimbus.models.base import Base
from nimbus.models.file_record import FileRecord
from nimbus.models.favorite import Favorite

__all__ = ["Base", "FileRecord", "Favorite"]
