"""Request id, CORS, bearer auth and access logging hooks."""
import hmac
import time
import uuid

from flask import Response, g, request

from ..core.config import get_cors_config, get_logging_config
from ..utils.errors import AuthError
from ..utils.http import get_client_ip
from ..utils.logging import log_event, redact_headers, redact_payload

PROTECTED_ENDPOINTS = ("chat_completions",)
CORS_ALLOW_HEADERS = "Authorization, Content-Type, X-Request-ID"
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
DETAIL_BODY_LIMIT = 4096


def check_bearer(auth_header, expected_key):
    """Return (error_message, error_code) for a bad header, or None when it matches."""
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return (
            "Unauthorized: Missing or invalid Authorization header. Use 'Bearer <YOUR_API_KEY>' format.",
            "missing_auth_header",
        )
    provided_key = auth_header[7:].strip()
    if not expected_key or not hmac.compare_digest(provided_key.encode("utf-8"), expected_key.encode("utf-8")):
        return "Unauthorized: Invalid API Key provided.", "invalid_auth_key"
    return None


def _allowed_origin(cors):
    origins = cors["origins"]
    if "*" in origins:
        return "*"
    origin = request.headers.get("Origin")
    if origin and origin in origins:
        return origin
    return None


def apply_cors_headers(response):
    cors = get_cors_config()
    origin = _allowed_origin(cors)
    if origin is None:
        return response
    if origin != "*":
        response.headers["Vary"] = "Origin"
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    if cors["allow_credentials"]:
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


def _response_preview(response):
    if response.mimetype == "text/event-stream" or response.is_streamed:
        return "[stream omitted]"
    return response.get_data(as_text=True)[:DETAIL_BODY_LIMIT]


def _log_request_detail(response, log_cfg):
    detail = {}
    if log_cfg["include_headers"]:
        detail["headers"] = redact_headers(dict(request.headers), log_cfg["redact_headers"])
    if log_cfg["include_body"]:
        body = request.get_json(silent=True) if request.is_json else None
        detail["body"] = redact_payload(body, log_cfg["redact_keys"])
        detail["response"] = _response_preview(response)
    log_event(20, "request_detail", request_id=g.get("request_id", ""), **detail)


def register_middlewares(app, settings):
    """Install the before/after request hooks on ``app``."""

    @app.before_request
    def start_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.request_start = time.time()
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.before_request
    def enforce_bearer_key():
        if request.endpoint not in PROTECTED_ENDPOINTS:
            return None
        failure = check_bearer(request.headers.get("Authorization"), settings.auth_key)
        if failure is None:
            return None
        message, code = failure
        log_event(20, "auth_failed", request_id=g.request_id, code=code, client_ip=get_client_ip())
        raise AuthError(message, code=code)

    @app.after_request
    def finish_request(response):
        response.headers["X-Request-ID"] = g.get("request_id", "")
        apply_cors_headers(response)

        started = g.get("request_start")
        log_event(
            20,
            "request",
            request_id=g.get("request_id", ""),
            method=request.method,
            path=request.path,
            status=response.status_code,
            latency_ms=int((time.time() - started) * 1000) if started else None,
            model=g.get("response_model"),
            stream=g.get("stream"),
            client_ip=get_client_ip(),
        )
        log_cfg = get_logging_config()
        if log_cfg["include_headers"] or log_cfg["include_body"]:
            _log_request_detail(response, log_cfg)
        return response
