"""Repository layer for data access."""

from portal.repositories.file_repository import FileRecord, FileRecordRepository

__all__ = [
    "FileRecord",
    "FileRecordRepository",
]
