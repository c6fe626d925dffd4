"""Optional config.json: advertised models, CORS, request-detail logging, port.

The file is re-read only when its mtime changes. A missing or unreadable file
behaves like an empty one.
"""
import json
import logging
import os
import time

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
DEFAULT_CONFIG_PATH = os.path.join(BASE_DIR, "config.json")
ALWAYS_REDACTED_HEADER = "authorization"

_cache = {"path": None, "mtime": None, "config": None}

logger = logging.getLogger("replicateproxy.config")


def get_config_path():
    return os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)


def _empty_config():
    return {"models": [], "server": {}, "cors": {}, "logging": {}, "errors": []}


def _section(raw, name):
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def _string_list(value):
    """Accept a list of strings or one comma-separated string."""
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def default_permission(model_id, created):
    """Static permission entry mirroring OpenAI's model object."""
    return {
        "id": f"modelperm-{model_id}",
        "object": "model_permission",
        "created": created,
        "allow_create_engine": False,
        "allow_sampling": True,
        "allow_logprobs": True,
        "allow_search_indices": False,
        "allow_view": True,
        "allow_fine_tuning": False,
        "organization": "*",
        "group": None,
        "is_blocking": False,
    }


def _model_object(entry, created_default):
    if isinstance(entry, str):
        entry = {"id": entry.strip()}
    if not isinstance(entry, dict) or not entry.get("id"):
        return None
    model_id = entry["id"]
    try:
        created = int(entry.get("created", created_default))
    except (TypeError, ValueError):
        created = created_default
    permission = entry.get("permission")
    if not isinstance(permission, list):
        permission = [default_permission(model_id, created)]
    return {
        "id": model_id,
        "object": "model",
        "created": created,
        "owned_by": entry.get("owned_by", "replicate"),
        "permission": permission,
        "root": entry.get("root", model_id),
        "parent": entry.get("parent"),
    }


def _normalize_models(models, created_default):
    if not isinstance(models, list):
        return []
    objects = (_model_object(entry, created_default) for entry in models)
    return [obj for obj in objects if obj is not None]


def _model_errors(models):
    if not isinstance(models, list):
        return ["models must be a list"]
    errors = []
    for entry in models:
        if isinstance(entry, str):
            if not entry.strip():
                errors.append("model id must be a non-empty string")
        elif not isinstance(entry, dict):
            errors.append("model entry must be an object or string")
        elif not entry.get("id"):
            errors.append("model entry missing id")
    return errors


def _server_errors(server):
    if not isinstance(server, dict) or "port" not in server:
        return []
    try:
        port = int(server["port"])
    except (TypeError, ValueError):
        return ["server.port must be an integer"]
    if not 0 < port <= 65535:
        return ["server.port must be between 1 and 65535"]
    return []


def validate_config(raw):
    """Return a list of human-readable problems; empty when the file is sound."""
    errors = _model_errors(raw.get("models", []))
    errors += _server_errors(raw.get("server", {}))
    cors = raw.get("cors", {})
    if isinstance(cors, dict) and "origins" in cors and not isinstance(cors["origins"], (list, str)):
        errors.append("cors.origins must be a list or comma-separated string")
    if "logging" in raw and not isinstance(raw["logging"], dict):
        errors.append("logging must be an object")
    return errors


def _read_file(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to read config %s: %s", path, exc)
        return None
    return raw if isinstance(raw, dict) else {}


def load_config():
    """Return the parsed config, re-reading the file only after it changes."""
    path = get_config_path()
    try:
        mtime = os.path.getmtime(path)
    except FileNotFoundError:
        return _empty_config()

    if _cache["config"] is not None and _cache["path"] == path and _cache["mtime"] == mtime:
        return _cache["config"]

    raw = _read_file(path)
    if raw is None:
        return _empty_config()

    errors = validate_config(raw)
    if errors:
        logger.warning("Config validation warnings: %s", "; ".join(errors))
    config = {
        "models": _normalize_models(raw.get("models", []), int(time.time())),
        "server": _section(raw, "server"),
        "cors": _section(raw, "cors"),
        "logging": _section(raw, "logging"),
        "errors": errors,
    }
    _cache.update(path=path, mtime=mtime, config=config)
    return config


def get_config_errors():
    return load_config()["errors"]


def get_server_port():
    port = load_config()["server"].get("port")
    try:
        return int(port)
    except (TypeError, ValueError):
        return None


def get_cors_config():
    """Allowed origins; an unconfigured proxy answers any origin."""
    cors = load_config()["cors"]
    if "origins" not in cors:
        return {"origins": ["*"], "allow_credentials": False}
    return {
        "origins": _string_list(cors["origins"]),
        "allow_credentials": bool(cors.get("allow_credentials", False)),
    }


def get_logging_config():
    """Request-detail logging switches; the Authorization header is always masked."""
    cfg = load_config()["logging"]
    redact_headers = _string_list(cfg.get("redact_headers", [ALWAYS_REDACTED_HEADER]))
    if ALWAYS_REDACTED_HEADER not in {name.lower() for name in redact_headers}:
        redact_headers.append(ALWAYS_REDACTED_HEADER)
    return {
        "include_headers": bool(cfg.get("include_headers", False)),
        "include_body": bool(cfg.get("include_body", False)),
        "redact_headers": redact_headers,
        "redact_keys": _string_list(cfg.get("redact_keys", [])),
    }


def get_models_response(default_model_name, created=None):
    """OpenAI-style model objects from config.json, else the single proxy model."""
    models = load_config()["models"]
    if models:
        return models
    created_value = int(created if created is not None else time.time())
    return [_model_object({"id": default_model_name, "created": created_value}, created_value)]
