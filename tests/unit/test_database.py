import sqlite3

import pytest

from core.database import DatabaseManager


@pytest.fixture
def db_mgr(tmp_path):
    mgr = DatabaseManager(str(tmp_path / "library.db"))
    mgr.initialize_schema()
    return mgr


def test_initialization_is_idempotent(db_mgr):
    db_mgr.initialize_schema()
    with db_mgr.get_connection() as conn:
        tables = {r['name'] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {'series', 'volumes', 'user_progress'} <= tables


def test_rollback_on_error(db_mgr):
    with pytest.raises(ValueError):
        with db_mgr.get_connection() as conn:
            conn.execute("INSERT INTO series (owner_id, folder_name) VALUES ('user-1', 'Naruto')")
            raise ValueError("Simulated Error")

    with db_mgr.get_connection() as conn:
        assert conn.execute("SELECT * FROM series").fetchone() is None


def test_series_identity_is_unique(db_mgr):
    with db_mgr.get_connection() as conn:
        conn.execute("INSERT INTO series (owner_id, folder_name) VALUES ('user-1', 'Naruto')")
    with pytest.raises(sqlite3.IntegrityError):
        with db_mgr.get_connection() as conn:
            conn.execute("INSERT INTO series (owner_id, folder_name) VALUES ('user-1', 'Naruto')")
