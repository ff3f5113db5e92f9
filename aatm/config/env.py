"""Bootstrap settings read from the environment once at import time."""

import os
from pathlib import Path


def string_to_bool(s: str) -> bool:
    return s.lower() in ["true", "yes", "1", "y"]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
CONFIG_PATH = DATA_DIR / "config.json"
HISTORY_PATH = DATA_DIR / "history.json"
PUBLIC_DIR = Path(os.getenv("PUBLIC_DIR", str(PROJECT_ROOT / "public")))

LOG_DIR = Path(os.getenv("LOG_DIR", str(DATA_DIR / "logs")))
ENABLE_LOGGING = string_to_bool(os.getenv("ENABLE_LOGGING", "false"))
DEBUG = string_to_bool(os.getenv("DEBUG", "false"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = _int_env("FLASK_PORT", _int_env("PORT", 3000))
SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "threading")

# Seconds; applies to every outbound HTTP call made by push adapters
REQUEST_TIMEOUT = _int_env("REQUEST_TIMEOUT", 20)
# Seconds; applies to every external executable invocation
PROCESS_TIMEOUT = _int_env("PROCESS_TIMEOUT", 6 * 3600)
MAX_CONCURRENT_JOBS = _int_env("MAX_CONCURRENT_JOBS", 2)
JOB_RETENTION_SECONDS = _int_env("JOB_RETENTION_SECONDS", 3600)
JOB_LOG_TAIL = _int_env("JOB_LOG_TAIL", 15)
HISTORY_LIMIT = _int_env("HISTORY_LIMIT", 500)
MAX_CONTENT_LENGTH = 30 * 1024 * 1024

MKTORRENT_BIN = os.getenv("MKTORRENT_BIN", "mktorrent")
MEDIAINFO_BIN = os.getenv("MEDIAINFO_BIN", "mediainfo")
