"""Flask app - routes, WebSocket handlers, and middleware."""

import json
import logging
import os
import queue
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple, Union

from flask import Flask, Response, jsonify, request, send_from_directory, stream_with_context
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from aatm import __version__
from aatm.api.websocket import ws_manager
from aatm.config.env import (
    DEBUG, FLASK_HOST, FLASK_PORT, MAX_CONTENT_LENGTH, PUBLIC_DIR, SOCKETIO_ASYNC_MODE,
)
from aatm.core.broadcaster import QueueChannel, broadcaster
from aatm.core.config import (
    ConfigValidationError, config as app_config, mask_secrets, secret_values,
)
from aatm.core.history import history
from aatm.core.jobs import job_registry
from aatm.core.logger import setup_logger
from aatm.core.sandbox import OutOfBoundsError, validate_path
from aatm.packaging.mediainfo import MediainfoUnavailable
from aatm.packaging.orchestrator import orchestrator
from aatm.packaging.process import ProcessError
from aatm.push import PushRequest, get_adapter, list_adapters
from aatm.push.errors import PushError

logger = setup_logger(__name__)

# Seconds between SSE keep-alive comments; also bounds how long a vanished
# client stays subscribed before the failed write is noticed
SSE_HEARTBEAT_SECONDS = 15

app = Flask(__name__)
app.wsgi_app = ProxyFix(app.wsgi_app)  # type: ignore
app.config['SEND_FILE_MAX_AGE_DEFAULT'] = 0
app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
app.json.sort_keys = False

# Gunicorn runs this app with a gevent websocket worker in production
# (SOCKETIO_ASYNC_MODE=gevent); the werkzeug dev server uses threads.
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode=SOCKETIO_ASYNC_MODE,
    logger=False,
    engineio_logger=False,
    path='/socket.io',
    ping_timeout=60,
    ping_interval=25,
)

ws_manager.init_app(app, socketio)
logger.info(f"Flask-SocketIO initialized with async_mode='{SOCKETIO_ASYNC_MODE}'")

# Enable CORS in development mode for local frontend development
if DEBUG:
    CORS(app, resources={
        r"/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "OPTIONS"]
        }
    })


class LogNoiseFilter(logging.Filter):
    """Filter out routine polling requests from the werkzeug access log."""

    def filter(self, record):
        message = record.getMessage() if hasattr(record, 'getMessage') else str(record.msg)
        if 'GET /api/health' in message or 'GET /api/torrent/status/' in message:
            return False
        if 'write() before start_response' in message:
            return False
        return True


app.logger.handlers = logger.handlers
app.logger.setLevel(logger.level)
werkzeug_logger = logging.getLogger('werkzeug')
werkzeug_logger.handlers = logger.handlers
werkzeug_logger.setLevel(logger.level)
werkzeug_logger.addFilter(LogNoiseFilter())


def ensure_storage() -> None:
    """Create the data directory, config and history documents on first start."""
    app_config.ensure()
    history.ensure()


def _mentions_secret(text: str) -> bool:
    lowered = text.lower()
    return 'password' in lowered or 'token' in lowered


def safe_error_message(error: BaseException) -> str:
    """Error text safe to return to a caller: never anything mentioning secrets."""
    message = str(error) or type(error).__name__
    if _mentions_secret(message):
        return 'Operation failed'
    return mask_secrets(message, secret_values(app_config.load()))


def safe_details(details: str) -> str:
    """Upstream response text with configured secrets masked.

    Empty when the text talks about passwords or tokens at all.
    """
    if not details or _mentions_secret(details):
        return ""
    return mask_secrets(details, secret_values(app_config.load()))


def error_response(message: str, status: int, details: Optional[str] = None) -> Tuple[Response, int]:
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def get_json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def api_errors(f: Callable) -> Callable:
    """Translate domain exceptions raised by a route into JSON responses."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except HTTPException:
            raise
        except OutOfBoundsError as e:
            logger.warning(f"Rejected path for {request.method} {request.path}: {e}")
            return error_response(str(e), 403)
        except ConfigValidationError as e:
            return error_response(str(e), 400)
        except MediainfoUnavailable as e:
            return error_response(str(e), 503)
        except PushError as e:
            payload = e.to_dict()
            payload["error"] = safe_error_message(e)
            details = safe_details(e.details)
            if details:
                payload["details"] = details
            else:
                payload.pop("details", None)
            return jsonify(payload), e.status_code
        except ProcessError as e:
            return error_response(safe_error_message(e), 502)
        except ValueError as e:
            return error_response(safe_error_message(e), 400)
        except Exception as e:
            safe_msg = safe_error_message(e)
            logger.error_trace(f"Request failed: {request.method} {request.path}: {safe_msg}")
            return error_response(safe_msg, 500)
    return decorated_function


# =============================================================================
# Health and configuration
# =============================================================================

@app.route('/api/health', methods=['GET'])
def api_health() -> Response:
    return jsonify({"ok": True, "version": __version__})


@app.route('/api/config', methods=['GET'])
@api_errors
def api_config_get() -> Union[Response, Tuple[Response, int]]:
    """Current configuration with secrets masked."""
    return jsonify(app_config.redacted())


@app.route('/api/config', methods=['POST'])
@api_errors
def api_config_update() -> Union[Response, Tuple[Response, int]]:
    """Merge the posted sections into the stored configuration."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return error_response("Invalid JSON body", 400)
    app_config.update(data)
    return jsonify({"ok": True})


# =============================================================================
# Filesystem and inspection
# =============================================================================

@app.route('/api/browse', methods=['GET'])
@api_errors
def api_browse() -> Union[Response, Tuple[Response, int]]:
    """List a directory inside the browse roots."""
    cfg = app_config.load()
    roots = cfg["browseRoots"]
    requested = request.args.get('path') or roots[0]
    target = validate_path(requested, roots)

    if not os.path.isdir(target):
        return error_response("Not a directory", 400)

    entries = []
    with os.scandir(target) as it:
        for entry in it:
            is_dir = entry.is_dir()
            entries.append({
                "name": entry.name,
                "type": "dir" if is_dir else "file",
                "path": os.path.join(target, entry.name),
            })
    entries.sort(key=lambda e: (e["type"] != "dir", e["name"].lower()))

    return jsonify({"roots": roots, "current": target, "entries": entries})


@app.route('/api/mediainfo', methods=['GET'])
@api_errors
def api_mediainfo_get() -> Union[Response, Tuple[Response, int]]:
    path = request.args.get('path')
    if not path:
        return error_response("path query parameter is required", 400)
    return jsonify(orchestrator.inspect(path))


@app.route('/api/mediainfo', methods=['POST'])
@api_errors
def api_mediainfo_post() -> Union[Response, Tuple[Response, int]]:
    path = get_json_body().get('path')
    if not path:
        return error_response("path is required", 400)
    return jsonify(orchestrator.inspect(path))


# =============================================================================
# Packaging jobs
# =============================================================================

@app.route('/api/torrent/create', methods=['POST'])
@api_errors
def api_torrent_create() -> Union[Response, Tuple[Response, int]]:
    """Start a packaging job; progress is reported via the status feed."""
    data = get_json_body()
    if not data.get('path'):
        return error_response("path is required", 400)

    job = orchestrator.submit(data['path'], data.get('mediaType') or None)
    return jsonify({
        "jobId": job.id,
        "outputDir": job.output_dir,
        "torrentPath": job.torrent_path,
        "nfoPath": job.nfo_path,
    }), 202


@app.route('/api/torrent/status/<job_id>', methods=['GET'])
def api_torrent_status(job_id: str) -> Union[Response, Tuple[Response, int]]:
    snapshot = job_registry.snapshot(job_id)
    if snapshot is None:
        return error_response("Unknown job", 404)
    return jsonify(snapshot)


def _sse_event(snapshot: Dict[str, Any]) -> str:
    return f"data: {json.dumps(snapshot)}\n\n"


@app.route('/api/torrent/progress', methods=['GET'])
def api_torrent_progress() -> Union[Response, Tuple[Response, int]]:
    """Server-Sent Events stream of job snapshots until the job finishes."""
    job_id = request.args.get('jobId')
    if not job_id:
        return error_response("jobId query parameter is required", 400)

    channel = QueueChannel()

    def generate():
        try:
            # Subscribe only once the stream is actually consumed
            broadcaster.subscribe(job_id, channel)
            while True:
                try:
                    snapshot = channel.get(timeout=SSE_HEARTBEAT_SECONDS)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                if snapshot is None:
                    return
                yield _sse_event(snapshot)
        finally:
            # Runs on normal end and when the client disconnects mid-stream
            broadcaster.unsubscribe(job_id, channel)
            channel.close()

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        },
    )


@app.route('/api/nfo/create', methods=['POST'])
@api_errors
def api_nfo_create() -> Union[Response, Tuple[Response, int]]:
    data = get_json_body()
    if not data.get('path'):
        return error_response("path is required", 400)
    result = orchestrator.create_nfo(
        data['path'],
        media_type=data.get('mediaType') or None,
        torrent_path=data.get('torrentPath') or "",
    )
    return jsonify({"ok": True, **result})


# =============================================================================
# Push adapters
# =============================================================================

def _push(adapter_name: str) -> Tuple[Response, int]:
    push_request = PushRequest.from_payload(get_json_body())
    adapter = get_adapter(adapter_name, config_store=app_config, history=history)
    result = adapter.push(push_request)
    return jsonify(result.to_dict()), 200


@app.route('/api/torrent/push', methods=['POST'])
@api_errors
def api_push_qbit() -> Tuple[Response, int]:
    return _push("qbittorrent")


@app.route('/api/lacale/upload', methods=['POST'])
@api_errors
def api_lacale_upload() -> Tuple[Response, int]:
    return _push("lacale")


@app.route('/api/transmission/push', methods=['POST'])
@api_errors
def api_transmission_push() -> Tuple[Response, int]:
    return _push("transmission")


@app.route('/api/deluge/push', methods=['POST'])
@api_errors
def api_deluge_push() -> Tuple[Response, int]:
    return _push("deluge")


@app.route('/api/push/<name>/test', methods=['POST'])
@api_errors
def api_push_test(name: str) -> Union[Response, Tuple[Response, int]]:
    """Check that a push target is reachable with the stored settings."""
    if name not in list_adapters():
        return error_response(f"Unknown push target: {name}", 404)
    adapter = get_adapter(name, config_store=app_config, history=history)
    ok, message = adapter.test_connection()
    logger.info(f"Connection test for {name}: {'ok' if ok else 'failed'}")
    return jsonify({
        "success": ok,
        "message": mask_secrets(message, secret_values(app_config.load())),
    })


@app.route('/api/lacale/preview', methods=['POST'])
@api_errors
def api_lacale_preview() -> Response:
    adapter = get_adapter("lacale", config_store=app_config, history=history)
    preview = adapter.preview(PushRequest.from_payload(get_json_body()))
    return jsonify({"ok": True, "preview": preview})


@app.route('/api/qbit/categories', methods=['GET'])
@api_errors
def api_qbit_categories() -> Response:
    adapter = get_adapter("qbittorrent", config_store=app_config, history=history)
    return jsonify(adapter.list_categories())


# =============================================================================
# History
# =============================================================================

@app.route('/api/history', methods=['GET'])
@api_errors
def api_history() -> Response:
    """Most recent operations, newest first."""
    limit = request.args.get('limit', type=int)
    return jsonify(history.entries(limit))


# =============================================================================
# Frontend and errors
# =============================================================================

@app.errorhandler(404)
def not_found_error(error: Exception) -> Union[Response, Tuple[Response, int]]:
    return error_response("Not found", 404)


@app.errorhandler(413)
def payload_too_large(error: Exception) -> Tuple[Response, int]:
    return error_response("Payload too large", 413)


@app.errorhandler(500)
def internal_error(error: Exception) -> Tuple[Response, int]:
    logger.error(f"Internal server error: {error}")
    return error_response("Internal server error", 500)


@app.route('/')
def index() -> Union[Response, Tuple[Response, int]]:
    return _serve_public('index.html')


@app.route('/<path:path>')
def catch_all(path: str) -> Union[Response, Tuple[Response, int]]:
    if path.startswith('api/'):
        return error_response("Not found", 404)
    return _serve_public(path)


def _serve_public(path: str) -> Union[Response, Tuple[Response, int]]:
    # send_from_directory refuses paths escaping PUBLIC_DIR
    if not os.path.isfile(os.path.join(PUBLIC_DIR, path)):
        return error_response("Not found", 404)
    return send_from_directory(PUBLIC_DIR, path)


# =============================================================================
# WebSocket handlers
# =============================================================================

@socketio.on('connect')
def handle_connect():
    logger.debug(f"WebSocket client connected: {request.sid}")


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.debug(f"WebSocket client disconnected: {request.sid}")
    ws_manager.unsubscribe(broadcaster, request.sid)


@socketio.on('subscribe_job')
def handle_subscribe_job(data):
    job_id = data.get('jobId') if isinstance(data, dict) else None
    if not job_id:
        return {"ok": False, "error": "jobId is required"}
    ws_manager.subscribe(broadcaster, request.sid, job_id)
    return {"ok": True}


@socketio.on('unsubscribe_job')
def handle_unsubscribe_job(data):
    job_id = data.get('jobId') if isinstance(data, dict) else None
    if job_id:
        ws_manager.unsubscribe(broadcaster, request.sid, job_id)
    return {"ok": True}


ensure_storage()
orchestrator.start()

if __name__ == '__main__':
    logger.info(f"Starting AATM NAS edition on {FLASK_HOST}:{FLASK_PORT} (debug={DEBUG})")
    socketio.run(
        app,
        host=FLASK_HOST,
        port=FLASK_PORT,
        debug=DEBUG,
        allow_unsafe_werkzeug=True  # For development only
    )
