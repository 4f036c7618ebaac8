"""SQLite-backed ObjectStore for persisting collection revisions."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Set

from intel_collection.models import (
    ManifestEntry,
    VersionedRecord,
    format_timestamp,
    parse_timestamp,
)
from intel_collection.storage.object_store import (
    AppendResult,
    AppendStatus,
    ObjectStore,
    canonical_body,
)

logger = logging.getLogger(__name__)


class SQLiteObjectStore(ObjectStore):
    """
    ObjectStore persisted in a SQLite database.

    Several collections may share one database file; every row carries the
    collection id. Each append runs in a single transaction so a revision
    and its registration are committed together.
    """

    def __init__(self, db_path: str, collection_id: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
            collection_id: Collection whose rows this store reads and writes
        """
        self.db_path = db_path
        self.collection_id = collection_id
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS revisions (
                    collection_id TEXT NOT NULL,
                    object_id TEXT NOT NULL,
                    version TEXT NOT NULL,
                    version_text TEXT,
                    spec_version TEXT,
                    media_type TEXT NOT NULL,
                    date_added TEXT NOT NULL,
                    body TEXT NOT NULL,
                    PRIMARY KEY (collection_id, object_id, version)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS registrations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection_id TEXT NOT NULL,
                    object_id TEXT NOT NULL,
                    version TEXT NOT NULL,
                    version_text TEXT,
                    media_type TEXT NOT NULL,
                    date_added TEXT NOT NULL,
                    UNIQUE (collection_id, object_id, version, media_type),
                    FOREIGN KEY (collection_id, object_id, version)
                        REFERENCES revisions(collection_id, object_id, version)
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_registration_added "
                "ON registrations(collection_id, date_added)"
            )

            conn.commit()

    def append(self, record: VersionedRecord) -> AppendResult:
        version = format_timestamp(record.version)
        body = canonical_body(record.body)

        with self._connect() as conn:
            try:
                cursor = conn.cursor()
                # Take the write lock up front so check-then-insert is atomic
                cursor.execute("BEGIN IMMEDIATE")
                cursor.execute("""
                    SELECT * FROM revisions
                    WHERE collection_id = ? AND object_id = ? AND version = ?
                """, (self.collection_id, record.id, version))
                row = cursor.fetchone()

                if row is not None:
                    existing = self._row_to_record(row)
                    if row['body'] != body:
                        conn.rollback()
                        return AppendResult(AppendStatus.ALREADY_EXISTS, existing, identical=False)
                    registered = self._insert_registration(cursor, record, version)
                    conn.commit()
                    return AppendResult(AppendStatus.ALREADY_EXISTS, existing, registered=registered)

                cursor.execute("""
                    INSERT INTO revisions (
                        collection_id, object_id, version, version_text,
                        spec_version, media_type, date_added, body
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    self.collection_id,
                    record.id,
                    version,
                    record.version_text,
                    record.spec_version,
                    record.media_type,
                    format_timestamp(record.date_added),
                    body,
                ))
                self._insert_registration(cursor, record, version)
                conn.commit()
                return AppendResult(AppendStatus.APPENDED)
            except sqlite3.Error:
                conn.rollback()
                raise

    def _insert_registration(self, cursor, record: VersionedRecord, version: str) -> bool:
        cursor.execute("""
            INSERT OR IGNORE INTO registrations (
                collection_id, object_id, version, version_text, media_type, date_added
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            self.collection_id,
            record.id,
            version,
            record.version_text,
            record.media_type,
            format_timestamp(record.date_added),
        ))
        return cursor.rowcount == 1

    def _row_to_record(self, row: sqlite3.Row) -> VersionedRecord:
        return VersionedRecord(
            id=row['object_id'],
            version=parse_timestamp(row['version']),
            spec_version=row['spec_version'] or '',
            media_type=row['media_type'],
            body=json.loads(row['body']),
            date_added=parse_timestamp(row['date_added']),
            version_text=row['version_text'] or '',
        )

    def get(self, object_id: str, version: datetime) -> Optional[VersionedRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM revisions
                WHERE collection_id = ? AND object_id = ? AND version = ?
            """, (self.collection_id, object_id, format_timestamp(version)))
            row = cursor.fetchone()

        if row is None:
            return None
        return self._row_to_record(row)

    def list_versions(self, object_id: str) -> List[datetime]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT version FROM revisions
                WHERE collection_id = ? AND object_id = ?
                ORDER BY version ASC
            """, (self.collection_id, object_id))
            return [parse_timestamp(row['version']) for row in cursor.fetchall()]

    def all_ids(self) -> Set[str]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT DISTINCT object_id FROM revisions WHERE collection_id = ?",
                (self.collection_id,),
            )
            return {row['object_id'] for row in cursor.fetchall()}

    def registrations(self) -> Iterator[ManifestEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT object_id, version, version_text, media_type, date_added
                FROM registrations
                WHERE collection_id = ?
                ORDER BY seq ASC
            """, (self.collection_id,))
            rows = cursor.fetchall()

        for row in rows:
            yield ManifestEntry(
                id=row['object_id'],
                version=parse_timestamp(row['version']),
                media_type=row['media_type'],
                date_added=parse_timestamp(row['date_added']),
                version_text=row['version_text'] or '',
            )

    def count(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) FROM revisions WHERE collection_id = ?",
                (self.collection_id,),
            )
            return cursor.fetchone()[0]

    def collection_ids(self) -> List[str]:
        """Collections that have rows in this database file."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT DISTINCT collection_id FROM revisions ORDER BY collection_id")
            return [row[0] for row in cursor.fetchall()]
