"""Admin API for the catalog import.

    POST /api/admin/import          start an import in the background (202, or 409 if busy)
    GET  /api/admin/import/events   live progress as server-sent events
    GET  /api/admin/import/status   {"running": bool}

The trigger returns as soon as the run has started; all progress reaches the
client through the event stream, which relays the process-wide progress
bridge.
"""

import json
import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from flask import Blueprint, Response, jsonify, request

from ingest.events import ERROR, EVENT_NAMES, FINISH, get_progress_bridge
from ingest.models import RunOptions, RunStats
from ingest.pipeline import build_pipeline

from .config import IMPORT_DB_PATH, IMPORT_UPLOAD_DIR, SSE_KEEPALIVE_SECONDS

__all__ = ["admin", "ImportRunner", "runner"]

logger = logging.getLogger(__name__)

# Create blueprint for admin API
admin = Blueprint("admin", __name__, url_prefix="/api/admin")


def _default_factory(options: RunOptions) -> Any:
    return build_pipeline(options, db_path=IMPORT_DB_PATH, upload_dir=IMPORT_UPLOAD_DIR)


class ImportRunner:
    """Runs at most one import at a time on a background thread."""

    def __init__(self, pipeline_factory: Callable[[RunOptions], Any] = _default_factory) -> None:
        self.pipeline_factory = pipeline_factory
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, options: RunOptions) -> bool:
        """Start a run; False if one is already in progress."""
        with self._lock:
            if self.running:
                return False
            self._thread = threading.Thread(
                target=self._run, args=(options,), name="catalog-import", daemon=True
            )
            self._thread.start()
            return True

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self, options: RunOptions) -> None:
        try:
            pipeline = self.pipeline_factory(options)
        except Exception as e:
            # The pipeline never started, so nothing else will report the failure
            logger.exception("Could not start import")
            bridge = get_progress_bridge()
            bridge.emit(ERROR, {"message": f"Could not start import: {e}"})
            bridge.emit(FINISH, {**RunStats().to_dict(), "cancelled": False, "error": str(e)})
            return
        report = pipeline.run()
        logger.info(f"Admin import finished: {report.state.value} {report.stats.to_dict()}")


runner = ImportRunner()


def _parse_options(body: Dict[str, Any]) -> Tuple[Optional[RunOptions], Optional[str]]:
    limit = body.get("product_limit")
    if limit is not None:
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            return None, "product_limit must be an integer"
        if limit < 1:
            return None, "product_limit must be positive"
    return RunOptions(
        test_mode=bool(body.get("test_mode", False)),
        product_limit=limit,
        update_images=bool(body.get("update_images", False)),
    ), None


@admin.route("/import", methods=["POST"])
def start_import() -> Tuple[Response, int]:
    """Start an import and acknowledge immediately."""
    body = request.get_json(silent=True) or {}
    options, error = _parse_options(body)
    if error:
        return jsonify({"success": False, "message": error}), 400

    if not runner.start(options):
        return jsonify({"success": False, "message": "An import is already running"}), 409

    logger.info(f"Admin import started: {options}")
    return jsonify({
        "success": True,
        "message": "Import started. Follow progress at /api/admin/import/events",
    }), 202


@admin.route("/import/status", methods=["GET"])
def import_status() -> Response:
    return jsonify({"running": runner.running})


def _sse_frame(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"


@admin.route("/import/events", methods=["GET"])
def import_events() -> Response:
    """Relay progress bridge events to the client until it disconnects."""
    keepalive = SSE_KEEPALIVE_SECONDS

    def event_stream() -> Iterator[str]:
        events: "queue.Queue[Tuple[str, Dict[str, Any]]]" = queue.Queue()

        def listener(event: str, payload: Dict[str, Any]) -> None:
            events.put((event, payload))

        bridge = get_progress_bridge()
        # Subscribed only once the client starts reading; closing the
        # response closes this generator and removes the listener
        bridge.subscribe(listener, EVENT_NAMES)
        try:
            yield ": connected\n\n"
            while True:
                try:
                    event, payload = events.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse_frame(event, payload)
        finally:
            bridge.unsubscribe(listener, EVENT_NAMES)

    return Response(
        event_stream(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
