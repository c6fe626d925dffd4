"""OpenAI wire format for Replicate output: SSE chunks and chat completions."""
import json
import time

from ..utils.errors import UpstreamError
from ..utils.logging import log_event
from ..utils.token_count import count_text_tokens

DONE_SENTINEL = "data: [DONE]\n\n"


def build_usage(prompt_tokens, completion_tokens):
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }


def make_chunk(response_id, model, created, content=None, role=None, finish_reason=None, usage=None):
    """Build one chat.completion.chunk; delta carries only the fields that are set."""
    delta = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    chunk = {
        "id": response_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
                "logprobs": None,
            }
        ],
    }
    if usage is not None and finish_reason == "stop":
        chunk["usage"] = usage
    return chunk


def format_sse(payload) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def stream_chat_sse(
    events,
    response_id,
    model,
    created,
    prompt_tokens,
    system_prompt_tokens=0,
    chunk_delay=0.0,
    sleep=time.sleep,
):
    """Re-encode upstream prediction events as OpenAI SSE lines.

    The role chunk goes out on the first event of any kind. ``output`` events
    become content chunks; ``done`` produces the usage-bearing stop chunk and
    the ``[DONE]`` sentinel. Running out of events before ``done`` raises, as
    does any error from the upstream iterator.
    """
    announced = False
    completion_text = ""
    try:
        for event in events:
            if not announced:
                yield format_sse(make_chunk(response_id, model, created, role="assistant"))
                announced = True

            if event.type == "output" and isinstance(event.data, str):
                completion_text += event.data
                yield format_sse(make_chunk(response_id, model, created, content=event.data))
                if chunk_delay:
                    sleep(chunk_delay)
            elif event.type == "done":
                total_prompt_tokens = prompt_tokens + system_prompt_tokens
                usage = build_usage(total_prompt_tokens, count_text_tokens(completion_text))
                yield format_sse(make_chunk(response_id, model, created, finish_reason="stop", usage=usage))
                yield DONE_SENTINEL
                log_event(
                    20,
                    "stream_completed",
                    response_id=response_id,
                    completion_chars=len(completion_text),
                    usage=usage,
                )
                return
    except Exception as exc:
        log_event(40, "stream_error", response_id=response_id, error=str(exc), error_type=type(exc).__name__)
        raise
    finally:
        close = getattr(events, "close", None)
        if close is not None:
            close()

    log_event(40, "stream_error", response_id=response_id, error="upstream ended without done event")
    raise UpstreamError("Upstream stream ended without a done event")


def build_chat_completion(response_id, model, created, content, prompt_tokens, system_prompt_tokens=0):
    """Assemble a non-streaming chat.completion object."""
    completion_tokens = count_text_tokens(content)
    return {
        "id": response_id,
        "object": "chat.completion",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": content,
                },
                "finish_reason": "stop",
                "logprobs": None,
            }
        ],
        "usage": build_usage(prompt_tokens + system_prompt_tokens, completion_tokens),
    }
