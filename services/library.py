import logging
import sqlite3
import time

from core.database import db
from core.errors import DuplicateVolumeError

logger = logging.getLogger(__name__)


def _is_empty(value):
    return value is None or (isinstance(value, str) and not value.strip())


class LibraryService:
    """Series/Volume identity lookups and writes.

    Methods that take ``conn`` participate in the caller's transaction.
    """

    def __init__(self):
        self.db = db

    def find_series(self, conn, owner_id, folder_name):
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM series WHERE owner_id = ? AND folder_name = ?", (owner_id, folder_name))
        row = cursor.fetchone()
        return dict(row) if row else None

    def resolve_series(self, conn, owner_id, folder_name, title=None, description=None,
                       bookmarked=False, cover_path=None):
        """Find-or-create the series. Existing fields are only filled when empty."""
        series = self.find_series(conn, owner_id, folder_name)
        now = time.time()
        cursor = conn.cursor()

        if not series:
            try:
                cursor.execute("""
                    INSERT INTO series (owner_id, folder_name, title, sort_title, description,
                                        cover_path, bookmarked, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    owner_id, folder_name, title, title or folder_name, description,
                    cover_path, int(bool(bookmarked)), now, now
                ))
                logger.info(f"Created series '{folder_name}' for owner {owner_id}")
                return self.find_series(conn, owner_id, folder_name)
            except sqlite3.IntegrityError:
                # A concurrent upload created it first; fall through to fill-if-empty
                series = self.find_series(conn, owner_id, folder_name)
                if not series:
                    raise

        updates, params = [], []
        if title and _is_empty(series['title']):
            updates += ["title = ?", "sort_title = ?"]
            params += [title, title]
        if description and _is_empty(series['description']):
            updates.append("description = ?")
            params.append(description)
        if cover_path and _is_empty(series['cover_path']):
            updates.append("cover_path = ?")
            params.append(cover_path)
        if bookmarked and not series['bookmarked']:
            updates.append("bookmarked = 1")

        if updates:
            params += [now, series['id']]
            cursor.execute(f"UPDATE series SET {', '.join(updates)}, updated_at = ? WHERE id = ?", params)
            series = self.find_series(conn, owner_id, folder_name)
        return series

    def volume_exists(self, owner_id, series_folder, volume_folder, conn=None):
        """Duplicate-identity check. Callable on its own or inside a transaction."""
        query = """
            SELECT v.id FROM volumes v
            JOIN series s ON s.id = v.series_id
            WHERE s.owner_id = ? AND s.folder_name = ? AND v.folder_name = ?
        """
        params = (owner_id, series_folder, volume_folder)
        if conn is not None:
            return conn.execute(query, params).fetchone() is not None
        with self.db.get_connection() as own_conn:
            return own_conn.execute(query, params).fetchone() is not None

    def insert_volume(self, conn, series_id, folder_name, page_count, file_path, mokuro_path,
                      title=None, cover_image_name=None):
        try:
            cursor = conn.execute("""
                INSERT INTO volumes (series_id, folder_name, title, sort_title, page_count,
                                     file_path, mokuro_path, cover_image_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                series_id, folder_name, title, title or folder_name, page_count,
                file_path, mokuro_path, cover_image_name, time.time()
            ))
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateVolumeError(f"Volume '{folder_name}' already exists in this series.") from e
            raise
        return cursor.lastrowid

    def upsert_progress(self, conn, user_id, volume_id, progress):
        conn.execute("""
            INSERT INTO user_progress (user_id, volume_id, page, completed, time_read, chars_read, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, volume_id) DO UPDATE SET
                page = excluded.page,
                completed = excluded.completed,
                time_read = excluded.time_read,
                chars_read = excluded.chars_read,
                updated_at = excluded.updated_at
        """, (
            user_id, volume_id, progress.page, int(progress.completed),
            progress.time_read, progress.chars_read, time.time()
        ))

    def get_volume(self, volume_id):
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM volumes WHERE id = ?", (volume_id,)).fetchone()
            return dict(row) if row else None


# Global instance
library_service = LibraryService()
