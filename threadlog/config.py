"""threadlog configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Corpus location: one directory per project, one .jsonl file per session
PROJECTS_DIR = Path(os.getenv("THREADLOG_PROJECTS_DIR", str(Path.home() / ".claude" / "projects"))).expanduser()
SESSION_FILE_SUFFIX = ".jsonl"

# Path decoding
PATH_PREFIXES_FILE = os.getenv("THREADLOG_PATH_PREFIXES_FILE", "")
CWD_SAMPLE_FILES = _env_int("THREADLOG_CWD_SAMPLE_FILES", 5)
CWD_SAMPLE_LINES = _env_int("THREADLOG_CWD_SAMPLE_LINES", 10)

# Live updates
HEARTBEAT_SECONDS = _env_float("THREADLOG_HEARTBEAT_SECONDS", 30.0)
WATCH_DEBOUNCE_MS = _env_int("THREADLOG_WATCH_DEBOUNCE_MS", 100)
REPLAY_EXISTING = _env_bool("THREADLOG_REPLAY_EXISTING", True)
RECONNECT_BASE_SECONDS = _env_float("THREADLOG_RECONNECT_BASE_SECONDS", 5.0)
RECONNECT_MAX_SECONDS = _env_float("THREADLOG_RECONNECT_MAX_SECONDS", 30.0)

# Observability
OTEL_ENABLED = _env_bool("THREADLOG_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("THREADLOG_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("THREADLOG_OTEL_SERVICE_NAME", "threadlog")
PROM_PORT = _env_int("THREADLOG_PROM_PORT", 0)

# Server settings
HOST = os.getenv("THREADLOG_HOST", "127.0.0.1")
PORT = int(os.getenv("THREADLOG_PORT", "8000"))

# CORS
FRONTEND_ORIGIN = os.getenv("THREADLOG_FRONTEND_ORIGIN", "http://localhost:3000")
