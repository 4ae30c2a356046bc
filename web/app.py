"""Flask admin app for the catalog import.

Exposes the import trigger and its live status stream (see ``web.api``).
"""

import base64
import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request

# Load environment variables from .env file (explicitly specify path)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from ingest.logging_config import setup_logging  # noqa: E402

from .api import admin  # noqa: E402
from .config import FLASK_DEBUG, FLASK_HOST, FLASK_PORT  # noqa: E402

# Admin-triggered imports log through the same handlers as CLI runs
setup_logging(level=logging.DEBUG if FLASK_DEBUG else logging.INFO)

app = Flask(__name__)
app.register_blueprint(admin)


# ---------- BASIC AUTH ----------


def _basic_auth_creds() -> Tuple[Optional[str], Optional[str]]:
    """Get admin credentials from environment."""
    return os.getenv("ADMIN_USER"), os.getenv("ADMIN_PASS")


def _unauthorized() -> Response:
    return Response(
        "Authentication required",
        401,
        {"WWW-Authenticate": 'Basic realm="Login Required"'},
    )


@app.before_request
def require_basic_auth() -> Optional[Response]:
    """
    Enforce HTTP Basic Auth for all routes.
    Skips enforcement if credentials are not configured (ADMIN_USER/ADMIN_PASS unset).
    """
    user, password = _basic_auth_creds()
    if not user or not password:
        return None  # auth disabled

    header = request.headers.get("Authorization", "")
    if not header.startswith("Basic "):
        return _unauthorized()

    try:
        decoded = base64.b64decode(header.split(" ", 1)[1]).decode("utf-8")
        username, passwd = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return _unauthorized()

    if username == user and passwd == password:
        return None
    return _unauthorized()


# ---------- FLASK ROUTES ----------


@app.route("/health", methods=["GET"])
def health() -> Response:
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG, threaded=True)
