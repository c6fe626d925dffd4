"""Route handlers for the proxy endpoints."""
import time
import uuid

from flask import Response, current_app, g, jsonify, request, stream_with_context
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from ..core.config import get_models_response
from ..services.messages import build_model_input, normalize_messages
from ..utils.errors import AuthError, InternalError, ProxyError, RequestValidationError, UpstreamError
from ..utils.http import auth_error_response, error_response
from ..utils.logging import log_event
from ..utils.token_count import count_text_tokens
from .schemas import ChatCompletionsRequest
from .streaming import build_chat_completion, stream_chat_sse

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _make_response_id():
    return f"chatcmpl-{uuid.uuid4()}"


def _get_dispatcher():
    return current_app.extensions["replicateproxy"]["dispatcher"]


def _parse_chat_request():
    """Return the validated request, or raise ProxyError for a bad body."""
    data = request.get_json(force=True, silent=True)
    if data is None:
        log_event(20, "invalid_json", request_id=g.request_id)
        raise RequestValidationError("Invalid JSON in request body", code="invalid_json")
    try:
        return ChatCompletionsRequest.model_validate(data)
    except ValidationError as e:
        locations = [err.get("loc", ()) for err in e.errors()]
        if all(loc and loc[0] != "messages" for loc in locations):
            fields = sorted({".".join(str(part) for part in loc) for loc in locations})
            log_event(20, "invalid_request", request_id=g.request_id, errors=e.errors(include_url=False))
            raise RequestValidationError(
                f"Invalid value for field(s): {', '.join(fields)}", code="invalid_request"
            ) from e
        raise RequestValidationError("Request body must contain a non-empty 'messages' array.") from e


def _with_first(first, events):
    yield first
    yield from events


def register_routes(app, settings):
    """Register Flask routes on the app."""

    @app.route('/v1/chat/completions', methods=['POST'])
    def chat_completions():
        payload = _parse_chat_request()
        messages = [msg.model_dump(exclude_none=True) for msg in payload.messages]
        normalized = normalize_messages(messages, settings.anti_echo_directive)
        model_input = build_model_input(
            normalized,
            max_tokens=settings.max_tokens,
            max_image_resolution=settings.max_image_resolution,
            directive=settings.anti_echo_directive,
        )

        response_id = _make_response_id()
        response_model = payload.model or settings.proxy_model_name
        created = int(time.time())
        g.response_model = response_model
        stream = payload.stream is True
        g.stream = stream
        prompt_tokens = count_text_tokens(model_input.prompt)
        system_prompt_tokens = count_text_tokens(model_input.system_prompt) if model_input.system_prompt else 0
        dispatcher = _get_dispatcher()

        if stream:
            events = dispatcher.dispatch_stream(model_input)
            # Pull the first event before committing to a 200 so that an
            # exhausted key pool still gets a JSON error body.
            try:
                first = next(events)
            except StopIteration as exc:
                raise UpstreamError("Failed to get response from API: upstream stream was empty") from exc
            except Exception as exc:
                raise UpstreamError(f"Failed to get response from API: {exc}") from exc
            sse = stream_chat_sse(
                _with_first(first, events),
                response_id,
                response_model,
                created,
                prompt_tokens,
                system_prompt_tokens,
                chunk_delay=settings.stream_chunk_delay,
            )
            return Response(stream_with_context(sse), mimetype="text/event-stream", headers=SSE_HEADERS)

        try:
            content = dispatcher.dispatch_once(model_input)
        except Exception as exc:
            raise UpstreamError(f"Failed to get response from API: {exc}") from exc
        completion = build_chat_completion(
            response_id,
            response_model,
            created,
            content,
            prompt_tokens,
            system_prompt_tokens,
        )
        log_event(20, "chat_completion", request_id=g.request_id, response_id=response_id, usage=completion["usage"])
        return jsonify(completion)

    @app.route('/v1/models', methods=['GET'])
    def list_models():
        models = get_models_response(settings.proxy_model_name, app.config.get("APP_STARTED_AT"))
        return jsonify({"object": "list", "data": models})

    @app.errorhandler(ProxyError)
    def handle_proxy_error(error):
        if isinstance(error, AuthError):
            return auth_error_response(error.message, error.code)
        if error.status >= 500:
            log_event(40, "chat_completions_error", request_id=getattr(g, "request_id", ""), error=error.message)
        return error_response(error.message, error.status, error.error_type, code=error.code)

    @app.errorhandler(404)
    @app.errorhandler(405)
    def handle_not_found(error):
        return error_response("Not Found or Method Not Allowed", 404, "invalid_request_error", code="invalid_json")

    @app.errorhandler(413)
    def handle_payload_too_large(error):
        return error_response("Request body too large", 413, "invalid_request_error", code="payload_too_large")

    @app.errorhandler(Exception)
    def handle_internal_error(error):
        if isinstance(error, HTTPException):
            return error_response(error.description or error.name, error.code or 500, "invalid_request_error")
        log_event(40, "unhandled_error", request_id=getattr(g, "request_id", ""), error=str(error),
                  error_type=type(error).__name__)
        fault = InternalError("Internal Server Error")
        return error_response(fault.message, fault.status, fault.error_type, code=fault.code)
