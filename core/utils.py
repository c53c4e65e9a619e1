import logging
import shutil
import unicodedata
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)


def remove_path(path):
    """Recursive, forced delete. Missing paths (or None) are a no-op."""
    if path is None:
        return
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass # removed concurrently
    else:
        path.unlink(missing_ok=True)


def remove_paths(paths):
    """Removes every path, logging failures instead of stopping at the first one.

    Returns the list of paths that could not be removed.
    """
    failed = []
    for p in paths:
        try:
            remove_path(p)
        except OSError as e:
            logger.error(f"Rollback could not remove {p}: {e}")
            failed.append(p)
    return failed


def storage_path(*parts) -> str:
    """Root-relative, forward-slash path for persisting in the database."""
    return str(PurePosixPath(*parts))


def nfc(text: str) -> str:
    return unicodedata.normalize('NFC', text)
