import logging
import shutil
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from core import config
from core.database import db
from core.errors import (
    DuplicateVolumeError, IngestError, OrphanedVolumeError, PathCollisionError, PersistenceError, StorageError,
)
from core.utils import remove_paths, storage_path
from services.classifier import pick_volume_cover
from services.library import library_service
from services.series_status import update_series_status

logger = logging.getLogger(__name__)


@dataclass
class VolumeLayout:
    """Final locations for one volume, both root-relative (DB) and absolute (disk)."""
    series_dir: str
    volume_dir: str
    mokuro_path: str
    series_cover_path: str = None

    def absolute(self, rel_path):
        return config.DATA_ROOT / Path(rel_path)

    @classmethod
    def compute(cls, owner_id, series_folder, volume_folder, cover_ext=None):
        series_dir = storage_path(config.UPLOADS_DIRNAME, owner_id, series_folder)
        return cls(
            series_dir=series_dir,
            volume_dir=storage_path(series_dir, volume_folder),
            mokuro_path=storage_path(series_dir, f"{volume_folder}{config.SIDECAR_EXTENSION}"),
            series_cover_path=storage_path(series_dir, f"{series_folder}{cover_ext}") if cover_ext else None,
        )


@dataclass
class PromotionResult:
    series_id: int
    volume_id: int
    page_count: int
    cover_image_name: str = None
    promoted: list = field(default_factory=list)


class IngestorService:
    def __init__(self):
        self.db = db
        self.library = library_service

    def promote(self, owner_id, series_folder, volume_folder, staging, metadata):
        """Moves a fully staged volume into permanent storage and records it.

        File moves happen first, database writes last, in a single transaction.
        On any failure every path this call created is removed before the error
        propagates.
        """
        cover_ext = Path(staging.series_cover.storage_name).suffix.lower() if staging.series_cover else None
        layout = VolumeLayout.compute(owner_id, series_folder, volume_folder, cover_ext)
        promoted = []
        series_dir = layout.absolute(layout.series_dir)
        created_series_dir = not series_dir.exists()

        try:
            self._move_files(layout, staging, owner_id, series_folder, promoted)
            series_id, volume_id, cover_name = self._write_records(
                layout, staging, owner_id, series_folder, volume_folder, metadata, promoted
            )
        except Exception as e:
            failed = remove_paths(reversed(promoted))
            if created_series_dir:
                self._remove_if_empty(series_dir)
            logger.warning(f"Promotion of '{series_folder}/{volume_folder}' failed, removed {len(promoted) - len(failed)} promoted path(s)")
            if isinstance(e, IngestError):
                raise
            if isinstance(e, sqlite3.Error):
                raise PersistenceError() from e
            if isinstance(e, OSError):
                raise StorageError() from e
            raise

        logger.info(f"Promoted '{series_folder}/{volume_folder}' for owner {owner_id}: volume {volume_id}, {staging.page_count} pages")
        return PromotionResult(series_id, volume_id, staging.page_count, cover_name, promoted)

    def _remove_if_empty(self, directory):
        try:
            directory.rmdir()
        except OSError:
            pass # another upload already put files here

    def _occupied(self, path, same_kind, owner_id, series_folder, volume_folder):
        """Error for a target path that already exists.

        ``same_kind`` is whether the existing entry is what this volume would
        have put there (a directory for the pages, a file for the sidecar).
        """
        if not same_kind:
            return PathCollisionError(f"Volume folder '{volume_folder}' collides with existing '{path.name}' in '{series_folder}'.")
        if self.library.volume_exists(owner_id, series_folder, volume_folder):
            return DuplicateVolumeError(f"Volume '{volume_folder}' already exists in '{series_folder}'.")
        logger.warning(f"Orphaned volume data at {path} has no library record; refusing to overwrite")
        return OrphanedVolumeError(f"'{path.name}' exists on disk but is not in the library. Remove it to re-upload.")

    def _move_files(self, layout, staging, owner_id, series_folder, promoted):
        series_dir = layout.absolute(layout.series_dir)
        volume_dir = layout.absolute(layout.volume_dir)
        mokuro_file = layout.absolute(layout.mokuro_path)

        series_dir.mkdir(parents=True, exist_ok=True)
        try:
            # Exclusive create: never write into a directory we did not make
            volume_dir.mkdir()
        except FileExistsError as e:
            raise self._occupied(volume_dir, volume_dir.is_dir(), owner_id, series_folder, volume_dir.name) from e
        promoted.append(volume_dir)

        if mokuro_file.exists() or mokuro_file.is_symlink():
            raise self._occupied(mokuro_file, mokuro_file.is_file(), owner_id, series_folder, volume_dir.name)
        shutil.move(str(staging.sidecar.path), str(mokuro_file))
        promoted.append(mokuro_file)

        for name, staged in staging.pages.items():
            shutil.move(str(staged.path), str(volume_dir / name))

        if layout.series_cover_path:
            cover_file = layout.absolute(layout.series_cover_path)
            with self.db.get_connection() as conn:
                existing = self.library.find_series(conn, owner_id, series_folder)
            if (existing and existing['cover_path']) or cover_file.exists():
                logger.info(f"Series '{series_folder}' already has a cover; discarding uploaded one")
                layout.series_cover_path = None
            else:
                shutil.move(str(staging.series_cover.path), str(cover_file))
                promoted.append(cover_file)

    def _write_records(self, layout, staging, owner_id, series_folder, volume_folder, metadata, promoted):
        cover_name = pick_volume_cover(list(staging.pages))
        with self.db.get_connection() as conn:
            series = self.library.resolve_series(
                conn, owner_id, series_folder,
                title=metadata.series_title,
                description=metadata.series_description,
                bookmarked=metadata.series_bookmarked,
                cover_path=layout.series_cover_path,
            )
            if layout.series_cover_path and series['cover_path'] != layout.series_cover_path:
                # Lost a race for the cover slot; our file is not referenced
                remove_paths([layout.absolute(layout.series_cover_path)])
                promoted.remove(layout.absolute(layout.series_cover_path))

            volume_id = self.library.insert_volume(
                conn, series['id'], volume_folder,
                page_count=staging.page_count,
                file_path=layout.volume_dir,
                mokuro_path=layout.mokuro_path,
                title=metadata.volume_title,
                cover_image_name=cover_name,
            )

            if metadata.volume_progress is not None:
                self.library.upsert_progress(conn, owner_id, volume_id, metadata.volume_progress)
                update_series_status(conn, series['id'])

        return series['id'], volume_id, cover_name


# Global instance
ingestor_service = IngestorService()
