"""HTTP helpers and error responses."""
from flask import jsonify, request

AUTH_CHALLENGE = 'Bearer realm="API Access"'


def get_client_ip() -> str:
    """Resolve client IP with basic X-Forwarded-For support."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr or "unknown"


def error_response(message: str, status: int = 400, error_type: str = "invalid_request_error", param=None, code=None):
    """Return OpenAI-style error payload."""
    payload = {
        "error": {
            "message": message,
            "type": error_type,
            "param": param,
            "code": code,
        }
    }
    return jsonify(payload), status


def auth_error_response(message: str, code: str):
    """Return a 401 error carrying the bearer challenge header."""
    response, status = error_response(message, 401, "invalid_request_error", code=code)
    response.headers["WWW-Authenticate"] = AUTH_CHALLENGE
    return response, status
