"""Centralized configuration for the admin web app."""

import os

from ingest.config import DB_PATH, UPLOAD_DIR

# Flask app settings; FLASK_PORT wins over a platform-provided PORT, then 5000
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("FLASK_PORT", os.getenv("PORT", "5000")))
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"

# Where admin-triggered imports write
IMPORT_DB_PATH = os.getenv("INGEST_DB_PATH", DB_PATH)
IMPORT_UPLOAD_DIR = os.getenv("INGEST_UPLOAD_DIR", UPLOAD_DIR)

# Seconds between keep-alive comments on an idle event stream
SSE_KEEPALIVE_SECONDS = float(os.getenv("SSE_KEEPALIVE_SECONDS", "15"))
