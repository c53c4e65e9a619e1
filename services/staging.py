import logging
import tempfile
from pathlib import Path

from core import config
from core.errors import StorageError, UploadLimitError
from core.utils import remove_paths
from services.classifier import Role

logger = logging.getLogger(__name__)


class PartDrain:
    """Sink for rejected file parts: bytes are counted and discarded."""

    def __init__(self, filename, reason=None):
        self.filename = filename
        self.reason = reason
        self.size = 0

    def write(self, chunk):
        self.size += len(chunk)

    def close(self):
        logger.debug(f"Drained {self.size} bytes of '{self.filename}' ({self.reason})")


class StagedFile:
    """A single file part being streamed into the scratch directory."""

    def __init__(self, role, storage_name, path: Path, max_size=None):
        self.role = role
        self.storage_name = storage_name
        self.path = path
        self.size = 0
        self._max_size = max_size if max_size is not None else config.MAX_FILE_SIZE
        try:
            self._handle = open(path, 'xb')
        except OSError as e:
            raise StorageError(f"Could not stage '{storage_name}'.") from e

    def write(self, chunk):
        self.size += len(chunk)
        if self.size > self._max_size:
            self._handle.close()
            raise UploadLimitError(f"'{self.storage_name}' exceeds the maximum file size.")
        try:
            self._handle.write(chunk)
        except OSError as e:
            self._handle.close()
            raise StorageError(f"Could not stage '{self.storage_name}'.") from e

    def close(self):
        if self._handle.closed:
            return
        try:
            self._handle.close()
        except OSError as e:
            raise StorageError(f"Could not stage '{self.storage_name}'.") from e

    @property
    def closed(self):
        return self._handle.closed


class StagingArea:
    """Per-request scratch directory, created lazily on the first accepted file."""

    def __init__(self, parent=None):
        self._parent = Path(parent) if parent else None
        self.path = None
        self.pages = {}  # storage_name -> StagedFile
        self.sidecar = None
        self.series_cover = None

    @property
    def parent(self):
        return self._parent or config.TEMP_UPLOADS_DIR

    def _ensure_dir(self):
        if self.path is None:
            try:
                self.parent.mkdir(parents=True, exist_ok=True)
                self.path = Path(tempfile.mkdtemp(prefix="upload-", dir=self.parent))
                (self.path / "pages").mkdir()
            except OSError as e:
                raise StorageError("Could not create a staging directory.") from e
            logger.info(f"Created staging dir: {self.path}")
        return self.path

    def has_page(self, storage_name):
        return storage_name in self.pages

    def open(self, role, storage_name) -> StagedFile:
        root = self._ensure_dir()
        ext = Path(storage_name).suffix.lower()
        if role is Role.PAGE:
            staged = StagedFile(role, storage_name, root / "pages" / storage_name)
            self.pages[storage_name] = staged
        elif role is Role.SIDECAR:
            staged = StagedFile(role, storage_name, root / f"sidecar{ext}")
            self.sidecar = staged
        elif role is Role.SERIES_COVER:
            staged = StagedFile(role, storage_name, root / f"series-cover{ext}")
            self.series_cover = staged
        else:
            raise ValueError(f"Cannot stage a part with role {role}")
        return staged

    @property
    def page_count(self):
        return len(self.pages)

    def cleanup(self):
        """Idempotent removal of the scratch directory.

        Returns False if the directory could not be removed; the failure is logged.
        """
        for staged in [*self.pages.values(), self.sidecar, self.series_cover]:
            if staged is not None and not staged.closed:
                try:
                    staged.close()
                except StorageError:
                    pass # file is deleted below anyway
        return not remove_paths([self.path])


def drain_stream(stream, chunk_size=None):
    """Consumes whatever remains of a request body so the client sees our response."""
    chunk_size = chunk_size or config.STREAM_CHUNK_SIZE
    total = 0
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return total
        total += len(chunk)
