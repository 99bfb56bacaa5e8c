"""File record repository for database operations."""

import json
import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from portal.database import get_db_connection

logger = logging.getLogger(__name__)

_LIST_FIELDS = ("file_types", "category_ids", "shared_with")

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "file_types",
    "category_ids",
    "remote_object_id",
    "remote_thumbnail_id",
    "shared_with",
)


@dataclass
class FileRecord:
    file_id: str
    name: str
    original_name: str
    remote_object_id: str
    mime_type: str
    size: int
    owner_id: str
    description: str = ""
    file_types: List[str] = field(default_factory=list)
    category_ids: List[str] = field(default_factory=list)
    remote_thumbnail_id: Optional[str] = None
    shared_with: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def can_be_read_by(self, user_id: str) -> bool:
        return user_id == self.owner_id or user_id in self.shared_with

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses and notification payloads."""
        return {
            "fileId": self.file_id,
            "name": self.name,
            "originalName": self.original_name,
            "description": self.description,
            "fileTypes": list(self.file_types),
            "categories": list(self.category_ids),
            "remoteObjectId": self.remote_object_id,
            "remoteThumbnailId": self.remote_thumbnail_id,
            "mimeType": self.mime_type,
            "size": self.size,
            "owner": self.owner_id,
            "sharedWith": list(self.shared_with),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _row_to_record(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        file_id=row["file_id"],
        name=row["name"],
        original_name=row["original_name"],
        description=row["description"],
        file_types=json.loads(row["file_types"]),
        category_ids=json.loads(row["category_ids"]),
        remote_object_id=row["remote_object_id"],
        remote_thumbnail_id=row["remote_thumbnail_id"],
        mime_type=row["mime_type"],
        size=row["size"],
        owner_id=row["owner_id"],
        shared_with=json.loads(row["shared_with"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class FileRecordRepository:
    @staticmethod
    def create_file(record: FileRecord) -> FileRecord:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO files (
                    file_id, name, original_name, description, file_types, category_ids,
                    remote_object_id, remote_thumbnail_id, mime_type, size, owner_id,
                    shared_with, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.file_id,
                    record.name,
                    record.original_name,
                    record.description,
                    json.dumps(record.file_types),
                    json.dumps(record.category_ids),
                    record.remote_object_id,
                    record.remote_thumbnail_id,
                    record.mime_type,
                    record.size,
                    record.owner_id,
                    json.dumps(record.shared_with),
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                )
            )
            conn.commit()

        logger.info(f"Created file record {record.file_id} [remote_object_id={record.remote_object_id}]")
        return record

    @staticmethod
    def get_by_id(file_id: str) -> Optional[FileRecord]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM files WHERE file_id = ?", (file_id,))
            row = cursor.fetchone()

            if row is None:
                return None

            return _row_to_record(row)

    @staticmethod
    def find(
        owner_id: Optional[str] = None,
        file_type: Optional[str] = None,
        category_id: Optional[str] = None,
        shared_with: Optional[str] = None,
        remote_object_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FileRecord]:
        """
        Find file records matching every given filter, newest first.

        Args:
            owner_id: Uploading user
            file_type: Record must carry this file type
            category_id: Record must belong to this category
            shared_with: Record must be shared with this user
            remote_object_id: Remote id of the main file
            limit: Maximum number of records

        Returns:
            List of matching FileRecord
        """
        clauses = []
        params: List[Any] = []

        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if remote_object_id is not None:
            clauses.append("remote_object_id = ?")
            params.append(remote_object_id)
        if file_type is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(files.file_types) WHERE value = ?)")
            params.append(file_type)
        if category_id is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(files.category_ids) WHERE value = ?)")
            params.append(category_id)
        if shared_with is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(files.shared_with) WHERE value = ?)")
            params.append(shared_with)

        query = "SELECT * FROM files"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]

    @staticmethod
    def update(file_id: str, **changes: Any) -> Optional[FileRecord]:
        """
        Update selected fields of a record.

        Args:
            file_id: Record to update
            **changes: Field values; only name, description, file_types,
                category_ids, remote ids and shared_with may change

        Returns:
            Updated FileRecord, or None if it does not exist
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        existing = FileRecordRepository.get_by_id(file_id)
        if existing is None:
            return None
        if not changes:
            return existing

        updated = replace(existing, updated_at=datetime.utcnow(), **changes)

        assignments = [f"{name} = ?" for name in changes] + ["updated_at = ?"]
        values = [
            json.dumps(value) if name in _LIST_FIELDS else value
            for name, value in changes.items()
        ]
        values.append(updated.updated_at.isoformat())
        values.append(file_id)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE files SET {', '.join(assignments)} WHERE file_id = ?",
                values
            )
            conn.commit()

        logger.info(f"Updated file record {file_id} ({', '.join(changes)})")
        return updated
