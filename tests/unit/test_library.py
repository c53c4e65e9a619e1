import sqlite3

import pytest

from core.database import db
from core.errors import DuplicateVolumeError
from services.library import library_service
from services.metadata import VolumeProgress
from services.series_status import IN_PROGRESS, READ, UNREAD, update_series_status


def _add_volume(conn, series_id, folder):
    return library_service.insert_volume(
        conn, series_id, folder, page_count=3,
        file_path=f"uploads/user-1/Naruto/{folder}",
        mokuro_path=f"uploads/user-1/Naruto/{folder}.mokuro",
    )


def test_resolve_series_creates_once(test_db):
    with db.get_connection() as conn:
        first = library_service.resolve_series(conn, "user-1", "Naruto")
        again = library_service.resolve_series(conn, "user-1", "Naruto")
        other_owner = library_service.resolve_series(conn, "user-2", "Naruto")

    assert first['id'] == again['id']
    assert other_owner['id'] != first['id']
    assert first['title'] is None
    assert first['cover_path'] is None


def test_resolve_series_fill_if_empty(test_db):
    with db.get_connection() as conn:
        library_service.resolve_series(conn, "user-1", "Naruto", title="Naruto", bookmarked=True)
        series = library_service.resolve_series(
            conn, "user-1", "Naruto",
            title="Something Else", description="Filled", bookmarked=False,
            cover_path="uploads/user-1/Naruto/Naruto.jpg",
        )

    assert series['title'] == "Naruto"
    assert series['description'] == "Filled"
    assert series['cover_path'] == "uploads/user-1/Naruto/Naruto.jpg"
    assert series['bookmarked'] == 1


def test_resolve_series_never_overwrites_cover(test_db):
    with db.get_connection() as conn:
        library_service.resolve_series(conn, "user-1", "Naruto", cover_path="uploads/user-1/Naruto/Naruto.png")
        series = library_service.resolve_series(conn, "user-1", "Naruto", cover_path="uploads/user-1/Naruto/Naruto.jpg")
    assert series['cover_path'] == "uploads/user-1/Naruto/Naruto.png"


def test_volume_exists(test_db):
    assert library_service.volume_exists("user-1", "Naruto", "Volume 1") is False
    with db.get_connection() as conn:
        series = library_service.resolve_series(conn, "user-1", "Naruto")
        _add_volume(conn, series['id'], "Volume 1")

    assert library_service.volume_exists("user-1", "Naruto", "Volume 1") is True
    assert library_service.volume_exists("user-1", "Naruto", "Volume 2") is False
    assert library_service.volume_exists("user-2", "Naruto", "Volume 1") is False


def test_unique_violation_maps_to_duplicate(test_db):
    with db.get_connection() as conn:
        series = library_service.resolve_series(conn, "user-1", "Naruto")
        _add_volume(conn, series['id'], "Volume 1")

    with pytest.raises(DuplicateVolumeError):
        with db.get_connection() as conn:
            _add_volume(conn, series['id'], "Volume 1")


def test_other_integrity_errors_propagate(test_db):
    with pytest.raises(sqlite3.IntegrityError):
        with db.get_connection() as conn:
            _add_volume(conn, 424242, "Volume 1")  # no such series


def test_upsert_progress(test_db):
    with db.get_connection() as conn:
        series = library_service.resolve_series(conn, "user-1", "Naruto")
        volume_id = _add_volume(conn, series['id'], "Volume 1")
        library_service.upsert_progress(conn, "user-1", volume_id, VolumeProgress(page=4))
        library_service.upsert_progress(conn, "user-1", volume_id, VolumeProgress(page=9, completed=True))
        rows = conn.execute("SELECT page, completed FROM user_progress WHERE volume_id = ?", (volume_id,)).fetchall()

    assert [tuple(r) for r in rows] == [(9, 1)]


def test_series_status(test_db):
    with db.get_connection() as conn:
        series = library_service.resolve_series(conn, "user-1", "Naruto")
        assert update_series_status(conn, series['id']) == UNREAD

        v1 = _add_volume(conn, series['id'], "Volume 1")
        v2 = _add_volume(conn, series['id'], "Volume 2")
        assert update_series_status(conn, series['id']) == UNREAD

        library_service.upsert_progress(conn, "user-1", v1, VolumeProgress(page=3))
        assert update_series_status(conn, series['id']) == IN_PROGRESS

        library_service.upsert_progress(conn, "user-1", v1, VolumeProgress(page=200, completed=True))
        library_service.upsert_progress(conn, "user-1", v2, VolumeProgress(page=180, completed=True))
        assert update_series_status(conn, series['id']) == READ

        status = conn.execute("SELECT status FROM series WHERE id = ?", (series['id'],)).fetchone()[0]
        assert status == READ

        assert update_series_status(conn, 999) is None


def test_progress_of_other_users_is_ignored(test_db):
    with db.get_connection() as conn:
        series = library_service.resolve_series(conn, "user-1", "Naruto")
        v1 = _add_volume(conn, series['id'], "Volume 1")
        library_service.upsert_progress(conn, "someone-else", v1, VolumeProgress(page=10, completed=True))
        assert update_series_status(conn, series['id']) == UNREAD
