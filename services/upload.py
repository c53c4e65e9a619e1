"""Request-scoped coordinator for a single volume upload.

A multipart upload is consumed as a stream of events. Text fields
(``series_folder_name``, ``volume_folder_name``, optional ``metadata``) must
all arrive before the first file part; file parts are classified, streamed
into a scratch directory, and finally promoted into the library in one step.
Any failure after the first file part rolls back everything that was written.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from werkzeug.sansio.multipart import Data, Epilogue, Field, File, MultipartDecoder, NeedData

from core import config
from core.errors import (
    ClientAbortError, DuplicateVolumeError, IncompleteVolumeError, IngestError,
    ProtocolError, UploadLimitError,
)
from core.utils import remove_paths
from services.classifier import Role, classify, sanitize_filename, sanitize_folder_name
from services.ingestor import ingestor_service
from services.library import library_service
from services.metadata import UploadMetadata
from services.staging import PartDrain, StagingArea

logger = logging.getLogger(__name__)

SERIES_FIELD = 'series_folder_name'
VOLUME_FIELD = 'volume_folder_name'
METADATA_FIELD = 'metadata'


class UploadState(Enum):
    AWAITING_IDENTIFIERS = "awaiting_identifiers"
    STAGING = "staging"
    COMMITTING = "committing"
    DONE = "done"
    DUPLICATE_REJECTED = "duplicate_rejected"
    VALIDATION_FAILED = "validation_failed"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATES = {
    UploadState.DONE, UploadState.DUPLICATE_REJECTED,
    UploadState.VALIDATION_FAILED, UploadState.ROLLED_BACK,
}


@dataclass
class IngestResult:
    volume_id: int
    series_id: int
    page_count: int
    skipped: int = 0


class UploadSession:
    """Upload context plus the state machine driving it."""

    def __init__(self, owner_id, staging_parent=None):
        self.owner_id = owner_id
        self.state = UploadState.AWAITING_IDENTIFIERS
        self.series_folder = None
        self.volume_folder = None
        self.metadata = UploadMetadata()
        self.staging = StagingArea(staging_parent)
        self.skipped = 0
        self.promoted = []
        self._seen_fields = set()
        self._current = None

    def __repr__(self):
        return f"<UploadSession {self.owner_id}:{self.series_folder}/{self.volume_folder} {self.state.value}>"

    def _transition(self, state):
        logger.info(f"Upload {self.series_folder}/{self.volume_folder} (owner {self.owner_id}): {self.state.value} -> {state.value}")
        self.state = state

    # --- Fields ---

    def receive_field(self, name, value):
        if self.state is not UploadState.AWAITING_IDENTIFIERS:
            raise ProtocolError(f"Field '{name}' arrived after file parts.")
        if name in self._seen_fields:
            raise ProtocolError(f"Field '{name}' was sent more than once.")
        self._seen_fields.add(name)

        if name == SERIES_FIELD:
            self.series_folder = sanitize_folder_name(value, "series folder name")
        elif name == VOLUME_FIELD:
            self.volume_folder = sanitize_folder_name(value, "volume folder name")
        elif name == METADATA_FIELD:
            self.metadata = UploadMetadata.from_json(value)
        else:
            logger.debug(f"Ignoring unknown field '{name}'")

    # --- Files ---

    def begin_file(self, filename):
        """Opens a sink for the next file part: a staged file or a drain."""
        if self.state is UploadState.AWAITING_IDENTIFIERS:
            if not (self.series_folder and self.volume_folder):
                raise ProtocolError("File received before series and volume folder names.")
            self._transition(UploadState.STAGING)
            # Fail fast, before any scratch directory exists
            if library_service.volume_exists(self.owner_id, self.series_folder, self.volume_folder):
                self._transition(UploadState.DUPLICATE_REJECTED)
                raise DuplicateVolumeError(f"Volume '{self.volume_folder}' already exists in '{self.series_folder}'.")
        elif self.state is not UploadState.STAGING:
            raise ProtocolError(f"Cannot accept files in state {self.state.value}.")

        result = classify(
            filename, self.series_folder,
            series_cover_claimed=self.staging.series_cover is not None,
            sidecar_claimed=self.staging.sidecar is not None,
        )
        if result.role is Role.REJECT:
            return self._drain(filename, result.reason)
        if result.role is Role.PAGE and self.staging.has_page(result.storage_name):
            logger.warning(f"Duplicate page '{result.storage_name}' in {self.series_folder}/{self.volume_folder}, skipping")
            return self._drain(filename, "duplicate page name")

        self._current = self.staging.open(result.role, result.storage_name)
        return self._current

    def _drain(self, filename, reason):
        self.skipped += 1
        self._current = PartDrain(sanitize_filename(filename) or filename, reason)
        return self._current

    def write(self, chunk):
        if self._current is None:
            raise ProtocolError("File data outside of a file part.")
        self._current.write(chunk)

    def end_file(self):
        if self._current is not None:
            self._current.close()
            self._current = None

    # --- End of stream ---

    def finish(self) -> IngestResult:
        if self.state is UploadState.AWAITING_IDENTIFIERS:
            self._transition(UploadState.VALIDATION_FAILED)
            raise IncompleteVolumeError("Upload contained no files.")
        if self.staging.page_count == 0 or self.staging.sidecar is None:
            self._transition(UploadState.VALIDATION_FAILED)
            missing = "page images" if self.staging.page_count == 0 else f"a {config.SIDECAR_EXTENSION} file"
            raise IncompleteVolumeError(f"Volume '{self.volume_folder}' is missing {missing}.")

        self._transition(UploadState.COMMITTING)
        # Narrow the race against a concurrent identical upload
        if library_service.volume_exists(self.owner_id, self.series_folder, self.volume_folder):
            raise DuplicateVolumeError(f"Volume '{self.volume_folder}' already exists in '{self.series_folder}'.")

        promotion = ingestor_service.promote(
            self.owner_id, self.series_folder, self.volume_folder, self.staging, self.metadata
        )
        self.promoted = promotion.promoted
        self._transition(UploadState.DONE)
        # The volume is committed; a leftover scratch dir is logged, not raised
        self.staging.cleanup()
        return IngestResult(promotion.volume_id, promotion.series_id, promotion.page_count, self.skipped)

    def abort(self):
        """Rollback: idempotent removal of everything this session wrote.

        Never raises for filesystem failures, so the error that caused the
        rollback is the one the caller sees.
        """
        if self.state is UploadState.DONE:
            return
        if self.state not in TERMINAL_STATES:
            self._transition(UploadState.ROLLED_BACK)
        failed = remove_paths(self.promoted)
        if not self.staging.cleanup() or failed:
            logger.warning(f"Incomplete rollback of {self.series_folder}/{self.volume_folder} for owner {self.owner_id}")
            return
        logger.info(f"Rolled back upload {self.series_folder}/{self.volume_folder} for owner {self.owner_id}")


def _iter_events(decoder):
    event = decoder.next_event()
    while not isinstance(event, NeedData):
        yield event
        if isinstance(event, Epilogue):
            return
        event = decoder.next_event()


class _PartRouter:
    """Routes decoder events for one request into an UploadSession."""

    def __init__(self, session):
        self.session = session
        self.part = None
        self.parts = 0
        self.field_buffer = []
        self.field_size = 0
        self.complete = False

    def handle(self, event):
        if isinstance(event, (Field, File)):
            self.parts += 1
            if self.parts > config.MAX_PARTS:
                raise UploadLimitError("Too many parts in upload.")
            self.part = event
            self.field_buffer, self.field_size = [], 0
            if isinstance(event, File):
                self.session.begin_file(event.filename)
        elif isinstance(event, Data):
            if isinstance(self.part, Field):
                self.field_size += len(event.data)
                if self.field_size > config.MAX_FIELD_SIZE:
                    raise UploadLimitError(f"Field '{self.part.name}' is too large.")
                self.field_buffer.append(event.data)
                if not event.more_data:
                    try:
                        value = b"".join(self.field_buffer).decode('utf-8')
                    except UnicodeDecodeError as e:
                        raise ProtocolError(f"Field '{self.part.name}' is not valid UTF-8.") from e
                    self.session.receive_field(self.part.name, value)
            else:
                self.session.write(event.data)
                if not event.more_data:
                    self.session.end_file()
        elif isinstance(event, Epilogue):
            self.complete = True


def ingest_multipart(chunks, boundary, owner_id, staging_parent=None) -> IngestResult:
    """Drives an UploadSession from raw multipart body chunks.

    ``chunks`` is any iterable of bytes. Running out of chunks before the
    closing boundary is treated as a client disconnect.
    """
    if isinstance(boundary, str):
        boundary = boundary.encode('latin-1')
    decoder = MultipartDecoder(boundary)
    session = UploadSession(owner_id, staging_parent)
    router = _PartRouter(session)

    try:
        for chunk in chunks:
            if not chunk:
                continue
            decoder.receive_data(chunk)
            for event in _iter_events(decoder):
                router.handle(event)

        decoder.receive_data(None)
        for event in _iter_events(decoder):
            router.handle(event)

        if not router.complete:
            raise ClientAbortError()
        return session.finish()
    except IngestError as e:
        session.abort()
        logger.warning(f"Upload failed ({type(e).__name__}): {e.message}")
        raise
    except ValueError as e:
        # werkzeug reports malformed or truncated multipart framing as ValueError
        session.abort()
        raise ClientAbortError("Malformed or truncated multipart body.") from e
    except BaseException:
        session.abort()
        raise
