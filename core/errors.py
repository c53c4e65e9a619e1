"""Error taxonomy for the upload pipeline.

Every failure raised while ingesting a volume is an ``IngestError``. The
coordinator catches them, rolls back, and re-raises; the HTTP layer maps
``status_code`` to the response.
"""


class IngestError(Exception):
    status_code = 500
    default_message = "An error occurred during file upload."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ProtocolError(IngestError):
    """Multipart parts arrived in an order the upload contract forbids."""
    default_message = "Malformed upload request."


class MetadataError(IngestError):
    default_message = "Invalid metadata field."


class DuplicateVolumeError(IngestError):
    status_code = 409
    default_message = "Volume already exists."


class IncompleteVolumeError(IngestError):
    """End of stream reached without pages or without an OCR sidecar."""
    default_message = "Upload is missing page images or the .mokuro file."


class StorageError(IngestError):
    default_message = "Could not write uploaded files."


class PersistenceError(IngestError):
    default_message = "Could not save volume to the library."


class UploadLimitError(IngestError):
    status_code = 413
    default_message = "Upload exceeds the configured size limits."


class ClientAbortError(IngestError):
    default_message = "Upload stream ended unexpectedly."


class OrphanedVolumeError(DuplicateVolumeError):
    """Volume files are on disk but no library record points at them."""
    default_message = "Volume files already exist on disk but are not in the library."


class PathCollisionError(IngestError):
    """A target path for the volume is taken by a different kind of entry."""
    status_code = 409
    default_message = "Volume folder name collides with an existing file."
