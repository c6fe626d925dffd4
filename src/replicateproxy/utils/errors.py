"""Error taxonomy mapped onto OpenAI-style error bodies."""
from typing import Optional


class ProxyError(Exception):
    """Base error carrying the HTTP status and OpenAI error fields."""

    status = 500
    error_type = "internal_error"
    code = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status


class AuthError(ProxyError):
    status = 401
    error_type = "invalid_request_error"
    code = "invalid_auth_key"


class RequestValidationError(ProxyError):
    status = 400
    error_type = "invalid_request_error"
    code = "invalid_messages"


class EmptyConversation(RequestValidationError):
    """Raised when a conversation yields no prompt text."""

    def __init__(self, message: str = "Request body must contain a non-empty 'messages' array."):
        super().__init__(message)


class UpstreamError(ProxyError):
    """Any failure talking to the model API."""

    status = 500
    error_type = "api_error"
    code = "api_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause


class InternalError(ProxyError):
    status = 500
    error_type = "internal_error"
    code = "internal_error"
