import json

import httpx
import pytest

from replicateproxy.services.replicate_service import (
    ReplicateClient,
    iter_sse_events,
    parse_model_ref,
)
from replicateproxy.utils.errors import UpstreamError

BASE_URL = "https://api.replicate.com/v1"
STREAM_URL = "https://stream.replicate.com/v1/files/abc123"


def _client(handler, poll_interval=0.0):
    http_client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return ReplicateClient("r8_test", poll_interval=poll_interval, http_client=http_client)


def _sse_handler(body, requests):
    def handler(request):
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(
                201,
                json={"id": "p1", "status": "starting", "urls": {"stream": STREAM_URL, "get": f"{BASE_URL}/predictions/p1"}},
            )
        return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

    return handler


def test_parse_model_ref():
    assert parse_model_ref("anthropic/claude-3.7-sonnet") == ("anthropic", "claude-3.7-sonnet", None)
    assert parse_model_ref("owner/model:abc123") == ("owner", "model", "abc123")
    with pytest.raises(ValueError):
        parse_model_ref("no-owner")


def test_sse_parser_handles_multiline_data_comments_and_ids():
    lines = [
        ": keep-alive",
        "event: output",
        "id: 1",
        "data: first",
        "data: second",
        "",
        "event: output",
        "data:",
        "",
        "event: done",
        "data: {}",
    ]

    events = list(iter_sse_events(lines))

    assert [(e.event, e.data, e.id) for e in events] == [
        ("output", "first\nsecond", "1"),
        ("output", "", "1"),
        ("done", "{}", "1"),
    ]


def test_stream_creates_prediction_and_yields_events():
    requests = []
    body = "event: output\ndata: Hel\n\nevent: output\ndata: lo\n\nevent: done\ndata: {}\n\n"
    client = _client(_sse_handler(body, requests))

    events = list(client.stream("anthropic/claude-3.7-sonnet", {"prompt": "hi"}))

    assert [(e.type, e.data) for e in events] == [("output", "Hel"), ("output", "lo"), ("done", "{}")]
    create, stream = requests
    assert create.url.path == "/v1/models/anthropic/claude-3.7-sonnet/predictions"
    assert json.loads(create.content) == {"input": {"prompt": "hi"}, "stream": True}
    assert create.headers["Authorization"] == "Bearer r8_test"
    assert str(stream.url) == STREAM_URL
    assert stream.headers["Accept"] == "text/event-stream"


def test_versioned_model_uses_predictions_endpoint():
    requests = []
    client = _client(_sse_handler("event: done\ndata: {}\n\n", requests))

    list(client.stream("owner/model:v1", {"prompt": "hi"}))

    assert requests[0].url.path == "/v1/predictions"
    assert json.loads(requests[0].content)["version"] == "v1"


def test_stream_error_event_raises():
    body = 'event: output\ndata: par\n\nevent: error\ndata: {"detail": "CUDA out of memory"}\n\n'
    client = _client(_sse_handler(body, []))

    stream = client.stream("owner/model", {"prompt": "hi"})
    assert next(stream).data == "par"
    with pytest.raises(UpstreamError, match="CUDA out of memory"):
        next(stream)


def test_stream_without_done_raises():
    client = _client(_sse_handler("event: output\ndata: partial\n\n", []))

    with pytest.raises(UpstreamError, match="done"):
        list(client.stream("owner/model", {"prompt": "hi"}))


def test_canceled_stream_raises():
    client = _client(_sse_handler('event: done\ndata: {"reason": "canceled"}\n\n', []))

    with pytest.raises(UpstreamError, match="canceled"):
        list(client.stream("owner/model", {"prompt": "hi"}))


def test_missing_stream_url_raises():
    def handler(request):
        return httpx.Response(201, json={"id": "p1", "status": "starting", "urls": {}})

    with pytest.raises(UpstreamError, match="streaming"):
        list(_client(handler).stream("owner/model", {"prompt": "hi"}))


def test_non_2xx_raises_with_status():
    def handler(request):
        return httpx.Response(401, json={"detail": "Invalid token"})

    with pytest.raises(UpstreamError) as excinfo:
        _client(handler).run("owner/model", {"prompt": "hi"})

    assert excinfo.value.status_code == 401
    assert "Invalid token" in str(excinfo.value)


def test_network_error_becomes_upstream_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="connection refused"):
        _client(handler).run("owner/model", {"prompt": "hi"})


def test_run_waits_and_polls_until_succeeded():
    requests = []
    polls = iter(
        [
            {"id": "p1", "status": "processing", "urls": {"get": f"{BASE_URL}/predictions/p1"}},
            {"id": "p1", "status": "succeeded", "output": ["Hel", "lo"], "urls": {"get": f"{BASE_URL}/predictions/p1"}},
        ]
    )

    def handler(request):
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(
                201, json={"id": "p1", "status": "starting", "urls": {"get": f"{BASE_URL}/predictions/p1"}}
            )
        return httpx.Response(200, json=next(polls))

    output = _client(handler).run("owner/model", {"prompt": "hi"})

    assert output == ["Hel", "lo"]
    assert requests[0].headers["Prefer"] == "wait"
    assert [r.method for r in requests] == ["POST", "GET", "GET"]


def test_run_returns_immediately_when_prefer_wait_completes():
    def handler(request):
        return httpx.Response(201, json={"id": "p1", "status": "succeeded", "output": "done"})

    assert _client(handler).run("owner/model", {"prompt": "hi"}) == "done"


def test_failed_prediction_raises():
    def handler(request):
        return httpx.Response(201, json={"id": "p1", "status": "failed", "error": "prompt too long"})

    with pytest.raises(UpstreamError, match="prompt too long"):
        _client(handler).run("owner/model", {"prompt": "hi"})
