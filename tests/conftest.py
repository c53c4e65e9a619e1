import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

BOUNDARY = "----mokuroTestBoundary7MA4YWxkTrZu0gW"
OWNER = "user-1"


@pytest.fixture
def test_db():
    """Creates a temporary file database with the full schema for testing."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")

    with patch("core.config.DB_FILE", Path(db_path)):
        from core.database import DatabaseManager
        DatabaseManager(db_path).initialize_schema()
        yield db_path

    os.close(db_fd)
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def data_root(tmp_path):
    """Library root and staging area inside a throwaway directory."""
    root = tmp_path / "data"
    root.mkdir()
    staging = root / "uploads" / ".staging"
    with (patch("core.config.DATA_ROOT", root),
          patch("core.config.TEMP_UPLOADS_DIR", staging)):
        yield root


@pytest.fixture
def multipart():
    """Encodes parts in exactly the given order.

    Fields are ``(name, value)`` with str or raw bytes values; files are
    ``(name, filename, content)``.
    """
    def encode(parts, terminate=True):
        body = b""
        for part in parts:
            if len(part) == 2:
                name, value = part
                body += (
                    f"--{BOUNDARY}\r\n"
                    f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                ).encode() + (value if isinstance(value, bytes) else value.encode("utf-8")) + b"\r\n"
            else:
                name, filename, content = part
                body += (
                    f"--{BOUNDARY}\r\n"
                    f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                    f"Content-Type: application/octet-stream\r\n\r\n"
                ).encode() + content + b"\r\n"
        if terminate:
            body += f"--{BOUNDARY}--\r\n".encode()
        return body
    encode.boundary = BOUNDARY
    return encode


@pytest.fixture
def client(test_db, data_root):
    """Flask test client."""
    from app import app as flask_app
    flask_app.config.update({"TESTING": True})

    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def upload(client, multipart):
    """POSTs an ordered multipart body to the upload endpoint."""
    def post(parts, owner=OWNER, terminate=True):
        return client.post(
            "/api/v1/library/upload",
            data=multipart(parts, terminate=terminate),
            content_type=f"multipart/form-data; boundary={BOUNDARY}",
            headers={"X-Owner-Id": owner} if owner else {},
        )
    return post
