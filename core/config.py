import os
from pathlib import Path

# Project Root (repo checkout)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Data Root: persisted relative paths resolve against this
DATA_ROOT = Path(os.environ.get("MOKURO_DATA_ROOT", PROJECT_ROOT))

# Permanent storage lives under DATA_ROOT / "uploads" / <owner_id>
UPLOADS_DIRNAME = "uploads"

# Scratch space for in-flight uploads (same filesystem as uploads so promotion is a rename)
TEMP_UPLOADS_DIR = Path(os.environ.get("MOKURO_TEMP_DIR", DATA_ROOT / UPLOADS_DIRNAME / ".staging"))

# Database
DB_FILE = Path(os.environ.get("MOKURO_DB_FILE", PROJECT_ROOT / "library.db"))

# File classification
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}
SIDECAR_EXTENSION = '.mokuro'
LEGACY_EXTENSIONS = {'.html'}
LEGACY_MARKERS = ('_ocr',)
JUNK_NAMES = {'thumbs.db', 'desktop.ini', '.ds_store'}

# Auth: opaque owner id injected by the upstream auth layer
OWNER_HEADER = os.environ.get("MOKURO_OWNER_HEADER", "X-Owner-Id")

# Upload limits
MAX_FILE_SIZE = int(os.environ.get("MOKURO_MAX_FILE_SIZE", 100 * 1024 * 1024))
MAX_PARTS = int(os.environ.get("MOKURO_MAX_PARTS", 10000))
MAX_FIELD_SIZE = 1024 * 1024
STREAM_CHUNK_SIZE = 64 * 1024

# Logging
LOG_LEVEL = os.environ.get("MOKURO_LOG_LEVEL", "INFO")
