import json
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import MetadataError

logger = logging.getLogger(__name__)

METADATA_KEYS = {'series_title', 'series_description', 'series_bookmarked', 'volume_title', 'volume_progress'}
PROGRESS_KEYS = {'page': 'page', 'isCompleted': 'completed', 'timeRead': 'time_read', 'charsRead': 'chars_read'}


def _optional_str(data, key):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MetadataError(f"'{key}' must be a string.")
    return value.strip() or None


def _count(data, key):
    value = data.get(key, 0)
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MetadataError(f"'{key}' must be a non-negative integer.")
    return value


@dataclass
class VolumeProgress:
    page: int = 0
    completed: bool = False
    time_read: int = 0
    chars_read: int = 0

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise MetadataError("'volume_progress' must be an object.")
        unknown = set(data) - set(PROGRESS_KEYS)
        if unknown:
            logger.debug(f"Ignoring unknown progress keys: {sorted(unknown)}")
        completed = data.get('isCompleted', False)
        if not isinstance(completed, bool):
            raise MetadataError("'isCompleted' must be a boolean.")
        return cls(
            page=_count(data, 'page'),
            completed=completed,
            time_read=_count(data, 'timeRead'),
            chars_read=_count(data, 'charsRead'),
        )


@dataclass
class UploadMetadata:
    """Optional hints sent alongside a volume upload."""
    series_title: Optional[str] = None
    series_description: Optional[str] = None
    series_bookmarked: bool = False
    volume_title: Optional[str] = None
    volume_progress: Optional[VolumeProgress] = None

    @classmethod
    def from_json(cls, text):
        if text is None or not text.strip():
            return cls()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MetadataError("Metadata field is not valid JSON.") from e
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise MetadataError("Metadata field must be a JSON object.")

        unknown = set(data) - METADATA_KEYS
        if unknown:
            logger.debug(f"Ignoring unknown metadata keys: {sorted(unknown)}")

        bookmarked = data.get('series_bookmarked') or False
        if not isinstance(bookmarked, bool):
            raise MetadataError("'series_bookmarked' must be a boolean.")

        progress = data.get('volume_progress')
        return cls(
            series_title=_optional_str(data, 'series_title'),
            series_description=_optional_str(data, 'series_description'),
            series_bookmarked=bookmarked,
            volume_title=_optional_str(data, 'volume_title'),
            volume_progress=VolumeProgress.from_dict(progress) if progress is not None else None,
        )
