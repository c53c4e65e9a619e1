"""Maps an uploaded file part to its role in the volume being ingested.

Pure functions only: the coordinator owns the upload context and passes in
what has been claimed so far.
"""
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from core import config
from core.errors import ProtocolError
from core.utils import nfc

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


class Role(Enum):
    SERIES_COVER = "series_cover"
    PAGE = "page"
    SIDECAR = "sidecar"
    REJECT = "reject"


@dataclass(frozen=True)
class Classification:
    role: Role
    storage_name: Optional[str] = None
    reason: Optional[str] = None


def sanitize_filename(name: str) -> str:
    """Basename only, NFC-normalized, illegal characters replaced with '_'."""
    name = nfc(name or "")
    # Browsers on Windows may still send a full path
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = _ILLEGAL_CHARS.sub("_", name)
    return name.rstrip(". ").strip()


def sanitize_folder_name(name: str, field: str = "folder name") -> str:
    """Filesystem-safe identity key. Raises ProtocolError if nothing usable remains."""
    cleaned = _ILLEGAL_CHARS.sub("_", nfc(name or "").strip()).rstrip(". ")
    if not cleaned or cleaned in (".", ".."):
        raise ProtocolError(f"Invalid {field}.")
    return cleaned


def _reject_reason(name: str, ext: str) -> Optional[str]:
    if not name:
        return "empty filename"
    if name.startswith(".") or name.lower() in config.JUNK_NAMES:
        return "hidden or system file"
    if ext in config.LEGACY_EXTENSIONS or any(m in name for m in config.LEGACY_MARKERS):
        return "legacy cache artifact"
    if ext not in config.IMAGE_EXTENSIONS and ext != config.SIDECAR_EXTENSION:
        return f"unsupported type '{ext or name}'"
    return None


def classify(filename, series_folder, series_cover_claimed=False, sidecar_claimed=False) -> Classification:
    """Applies the classification rules in order.

    1. hidden, junk, legacy/cache, or unknown extension -> REJECT
    2. image named after the series folder -> SERIES_COVER (first one wins)
    3. sidecar extension -> SIDECAR (a second one is a protocol error)
    4. any other image -> PAGE
    """
    name = sanitize_filename(filename)
    path = PurePosixPath(name)
    ext = path.suffix.lower()

    reason = _reject_reason(name, ext)
    if reason:
        return Classification(Role.REJECT, reason=reason)

    is_image = ext in config.IMAGE_EXTENSIONS

    if is_image and not series_cover_claimed and path.stem == series_folder:
        return Classification(Role.SERIES_COVER, name)

    if ext == config.SIDECAR_EXTENSION:
        if sidecar_claimed:
            raise ProtocolError(f"More than one {config.SIDECAR_EXTENSION} file in a single volume upload.")
        return Classification(Role.SIDECAR, name)

    return Classification(Role.PAGE, name)


def pick_volume_cover(page_names):
    """Lexicographically first page image, or None for an empty volume."""
    return min(page_names) if page_names else None
