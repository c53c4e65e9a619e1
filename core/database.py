import sqlite3
from contextlib import contextmanager
from . import config


class DatabaseManager:
    def __init__(self, db_path=None):
        self._db_path = db_path

    @property
    def db_path(self):
        return self._db_path or config.DB_FILE

    @contextmanager
    def get_connection(self):
        """Provides a context-managed database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row # Return rows as dictionaries
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize_schema(self):
        """Idempotent schema initialization."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            # 1. Series: one per (owner, folder)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS series (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    folder_name TEXT NOT NULL,
                    title TEXT,
                    sort_title TEXT,
                    description TEXT,
                    cover_path TEXT,
                    bookmarked INTEGER DEFAULT 0, -- 0 or 1
                    status INTEGER DEFAULT 0, -- 0 unread, 1 in progress, 2 read
                    created_at REAL,
                    updated_at REAL,
                    UNIQUE(owner_id, folder_name)
                ) STRICT
            ''')

            # 2. Volumes: one per (series, folder)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS volumes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    series_id INTEGER NOT NULL,
                    folder_name TEXT NOT NULL,
                    title TEXT,
                    sort_title TEXT,
                    page_count INTEGER NOT NULL,
                    file_path TEXT NOT NULL,
                    mokuro_path TEXT NOT NULL,
                    cover_image_name TEXT,
                    created_at REAL,
                    UNIQUE(series_id, folder_name),
                    FOREIGN KEY(series_id) REFERENCES series(id) ON DELETE CASCADE
                ) STRICT
            ''')

            # 3. Reading progress per user and volume
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS user_progress (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    volume_id INTEGER NOT NULL,
                    page INTEGER DEFAULT 0,
                    completed INTEGER DEFAULT 0,
                    time_read INTEGER DEFAULT 0,
                    chars_read INTEGER DEFAULT 0,
                    updated_at REAL,
                    UNIQUE(user_id, volume_id),
                    FOREIGN KEY(volume_id) REFERENCES volumes(id) ON DELETE CASCADE
                ) STRICT
            ''')

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_volumes_series ON volumes(series_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_progress_volume ON user_progress(volume_id)")


# Global instance
db = DatabaseManager()
