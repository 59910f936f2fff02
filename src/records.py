#!/usr/bin/env python3
import sqlite3
import threading
from collections import namedtuple
from contextlib import closing
from datetime import datetime, timezone

FileRecord = namedtuple('FileRecord', ['id', 'storage_path', 'original_name', 'delete_token', 'created_at'])


class RecordStore:
    """sqlite backed mapping of file id to FileRecord."""

    def __init__(self, db_file):
        self.db_file = db_file
        self._write_lock = threading.Lock()

    def _connect(self):
        # One connection per call, so request threads never share one.
        return closing(sqlite3.connect(self.db_file, timeout=30))

    def init_db(self):
        """Creates the files table if it doesn't exist."""
        with self._write_lock, self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS files (
                    id TEXT PRIMARY KEY,
                    storage_path TEXT NOT NULL,
                    original_name TEXT NOT NULL,
                    delete_token TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            ''')
            conn.commit()

    def has(self, file_id):
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM files WHERE id = ?", (file_id,)).fetchone()
        return row is not None

    def get(self, file_id):
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, storage_path, original_name, delete_token, created_at FROM files WHERE id = ?",
                (file_id,)
            ).fetchone()
        if row is None:
            return None
        return FileRecord(*row)

    def set(self, record):
        created_at = record.created_at or datetime.now(timezone.utc).isoformat(timespec='seconds')
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO files (id, storage_path, original_name, delete_token, created_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.storage_path, record.original_name, record.delete_token, created_at)
            )
            conn.commit()

    def delete(self, file_id):
        """Removes the record, returns whether one existed."""
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            conn.commit()
            return cursor.rowcount > 0

    def __len__(self):
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
