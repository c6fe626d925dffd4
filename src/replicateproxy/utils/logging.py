"""JSON-lines logging for the proxy.

Every record is one JSON object: ``{"message": <event>, "ts": <epoch>, ...}``.
Records go to stdout and, unless ``LOG_TO_FILE`` is off, to a size-rotated
``replicateproxy.log`` under the configured log directory.
"""
import json
import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler

LOG_FILENAME = "replicateproxy.log"
MASK = "***"

logger = logging.getLogger("replicateproxy")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _file_handler(log_dir: str) -> RotatingFileHandler:
    os.makedirs(log_dir, exist_ok=True)
    max_bytes = max(1, int(float(os.getenv("LOG_FILE_MAX_MB", "10")) * 1024 * 1024))
    backups = max(1, int(os.getenv("LOG_FILE_BACKUPS", "5")))
    handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILENAME),
        maxBytes=max_bytes,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(level: str, log_dir: str | None = None) -> None:
    """Route the root logger to stdout, plus the rotating file when enabled."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir and _env_flag("LOG_TO_FILE", "true"):
        try:
            handlers.append(_file_handler(log_dir))
        except OSError as exc:
            print(f"[replicateproxy] file logging disabled: {exc}", file=sys.stderr)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=handlers, force=True)


def log_event(level: int, message: str, **fields) -> None:
    record = {"message": message, "ts": int(time.time()), **fields}
    logger.log(level, json.dumps(record, ensure_ascii=False, default=str))


def redact_headers(headers, redact_list):
    """Mask header values whose names appear in ``redact_list`` (case-insensitive)."""
    hidden = {name.lower() for name in redact_list}
    return {key: MASK if key.lower() in hidden else value for key, value in headers.items()}


def redact_payload(payload, redact_keys):
    if isinstance(payload, list):
        return [redact_payload(item, redact_keys) for item in payload]
    if not isinstance(payload, dict):
        return payload
    return {
        key: MASK if key in redact_keys else redact_payload(value, redact_keys)
        for key, value in payload.items()
    }


def truncate_text(value, limit: int = 2000):
    """Shorten long strings (e.g. data: image URLs) before they reach the log."""
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "...(truncated)"
    return value
