import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import ClientDisconnected

from core import config
from core.database import db
from core.errors import ClientAbortError, IngestError, ProtocolError
from services.classifier import sanitize_folder_name
from services.staging import drain_stream
from services.upload import ingest_multipart

logger = logging.getLogger(__name__)

api_v1 = Blueprint('api_v1', __name__)


@api_v1.before_request
def load_owner():
    """The auth layer in front of us injects the authenticated owner id."""
    owner_id = (request.headers.get(config.OWNER_HEADER) or '').strip()
    try:
        safe = sanitize_folder_name(owner_id, "owner id") if owner_id else None
    except ProtocolError:
        safe = None
    if not safe or safe != owner_id:
        return jsonify({'message': 'Authentication required.'}), 401
    g.owner_id = owner_id


def _request_chunks(stream):
    while True:
        try:
            chunk = stream.read(config.STREAM_CHUNK_SIZE)
        except ClientDisconnected as e:
            raise ClientAbortError("Client disconnected during upload.") from e
        if not chunk:
            return
        yield chunk


def _drain_request():
    try:
        drain_stream(request.stream)
    except ClientDisconnected:
        logger.debug("Client went away while draining a failed upload")


# --- Library ---

@api_v1.route('/library/upload', methods=['POST'])
def upload_volume():
    """Ingests one volume from an ordered multipart stream (fields first, then files)."""
    boundary = request.mimetype_params.get('boundary')
    if request.mimetype != 'multipart/form-data' or not boundary:
        return jsonify({'message': 'Expected a multipart/form-data body.'}), 400

    try:
        result = ingest_multipart(_request_chunks(request.stream), boundary, g.owner_id)
    except IngestError as e:
        _drain_request()
        if e.status_code >= 500:
            logger.error(f"Upload failed for owner {g.owner_id}: {e.message}")
        return jsonify({'message': e.message}), e.status_code
    except Exception:
        logger.exception(f"Upload failed for owner {g.owner_id} with an unexpected error")
        _drain_request()
        return jsonify({'message': 'An error occurred during file upload.'}), 500

    logger.info(f"Upload complete for owner {g.owner_id}: volume {result.volume_id} ({result.page_count} pages, {result.skipped} skipped)")
    return jsonify({
        'message': 'Upload processed.',
        'processed': 1,
        'volumeId': result.volume_id,
    }), 200


@api_v1.route('/library', methods=['GET'])
def list_library():
    """Every series owned by the caller, with its volumes."""
    try:
        with db.get_connection() as conn:
            series = [dict(r) for r in conn.execute(
                "SELECT * FROM series WHERE owner_id = ? ORDER BY COALESCE(sort_title, folder_name)",
                (g.owner_id,)
            ).fetchall()]
            for s in series:
                s['volumes'] = [dict(v) for v in conn.execute(
                    "SELECT * FROM volumes WHERE series_id = ? ORDER BY COALESCE(sort_title, folder_name)",
                    (s['id'],)
                ).fetchall()]
        return jsonify(series)
    except Exception:
        logger.exception("Could not retrieve library")
        return jsonify({'message': 'Could not retrieve library.'}), 500
