"""Replicate HTTP client: predictions, SSE output streams and polling."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

import httpx

from ..core.settings import DEFAULT_BASE_URL
from ..utils.errors import UpstreamError
from ..utils.logging import log_event, truncate_text

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


@dataclass(frozen=True)
class UpstreamEvent:
    """One event from a prediction stream: ``output``, ``done``, ``logs``..."""

    type: str
    data: Any = None
    id: str = ""


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: str = ""


def iter_sse_events(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    """Parse decoded text lines into server-sent events."""
    event_name = None
    event_id = ""
    data_lines = []
    for line in lines:
        line = line.rstrip("\r")
        if line == "":
            if event_name is not None or data_lines:
                yield ServerSentEvent(event=event_name or "message", data="\n".join(data_lines), id=event_id)
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            event_id = value
    if event_name is not None or data_lines:
        yield ServerSentEvent(event=event_name or "message", data="\n".join(data_lines), id=event_id)


def parse_model_ref(model_ref: str) -> Tuple[str, str, Optional[str]]:
    """Split ``owner/name`` or ``owner/name:version`` into its parts."""
    ref, _, version = model_ref.partition(":")
    owner, _, name = ref.partition("/")
    if not owner or not name or "/" in name:
        raise ValueError(f"Invalid model reference: {model_ref!r}; expected owner/name[:version]")
    return owner, name, version or None


def _error_detail(data: str) -> str:
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        return data or "unknown error"
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("error") or payload)
    return str(payload)


def _done_reason(data: str) -> Optional[str]:
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        return None
    if isinstance(payload, dict):
        return payload.get("reason")
    return None


class ReplicateClient:
    """Thin synchronous client for the Replicate predictions API."""

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: Optional[float] = None,
        poll_interval: float = 0.5,
        http_client: Optional[httpx.Client] = None,
    ):
        self.poll_interval = poll_interval
        headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
            "User-Agent": "replicate-proxy",
        }
        if http_client is None:
            http_client = httpx.Client(base_url=base_url, timeout=timeout, headers=headers)
        else:
            http_client.headers.update(headers)
        self._http = http_client

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to Replicate failed: {exc}", cause=exc) from exc
        if not response.is_success:
            raise UpstreamError(
                f"Replicate returned {response.status_code}: {truncate_text(response.text)}",
                status_code=response.status_code,
            )
        return response

    def create_prediction(
        self,
        model_ref: str,
        model_input: Dict[str, Any],
        stream: bool = False,
        wait: bool = False,
    ) -> Dict[str, Any]:
        """Create a prediction for an official model or a pinned version."""
        owner, name, version = parse_model_ref(model_ref)
        body: Dict[str, Any] = {"input": model_input}
        if version:
            path = "/predictions"
            body["version"] = version
        else:
            path = f"/models/{owner}/{name}/predictions"
        if stream:
            body["stream"] = True
        headers = {"Prefer": "wait"} if wait else None
        response = self._request("POST", path, json=body, headers=headers)
        try:
            prediction = response.json()
        except ValueError as exc:
            raise UpstreamError("Replicate returned a non-JSON prediction", cause=exc) from exc
        log_event(10, "prediction_created", prediction_id=prediction.get("id"), status=prediction.get("status"))
        return prediction

    def get_prediction(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        url = (prediction.get("urls") or {}).get("get") or f"/predictions/{prediction.get('id')}"
        return self._request("GET", url).json()

    def wait(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        """Poll until the prediction reaches a terminal status."""
        while prediction.get("status") not in TERMINAL_STATUSES:
            time.sleep(self.poll_interval)
            prediction = self.get_prediction(prediction)
        if prediction.get("status") == "failed":
            raise UpstreamError(f"Prediction failed: {prediction.get('error') or 'unknown error'}")
        if prediction.get("status") == "canceled":
            raise UpstreamError("Prediction was canceled")
        return prediction

    def run(self, model_ref: str, model_input: Dict[str, Any]) -> Any:
        """Run a prediction to completion and return its raw output."""
        prediction = self.create_prediction(model_ref, model_input, wait=True)
        prediction = self.wait(prediction)
        return prediction.get("output")

    def stream(self, model_ref: str, model_input: Dict[str, Any]) -> Iterator[UpstreamEvent]:
        """Yield prediction events until ``done``.

        An ``error`` event, a failed HTTP exchange, or a stream that closes
        before ``done`` raises UpstreamError.
        """
        prediction = self.create_prediction(model_ref, model_input, stream=True)
        stream_url = (prediction.get("urls") or {}).get("stream")
        if not stream_url:
            raise UpstreamError(f"Model {model_ref} does not support streaming")

        headers = {"Accept": "text/event-stream", "Cache-Control": "no-store"}
        try:
            with self._http.stream("GET", stream_url, headers=headers) as response:
                if not response.is_success:
                    response.read()
                    raise UpstreamError(
                        f"Replicate stream returned {response.status_code}: {truncate_text(response.text)}",
                        status_code=response.status_code,
                    )
                for sse in iter_sse_events(response.iter_lines()):
                    if sse.event == "error":
                        raise UpstreamError(f"Prediction failed: {_error_detail(sse.data)}")
                    if sse.event == "done":
                        if _done_reason(sse.data) == "canceled":
                            raise UpstreamError("Prediction was canceled")
                        yield UpstreamEvent(type="done", data=sse.data, id=sse.id)
                        return
                    yield UpstreamEvent(type=sse.event, data=sse.data, id=sse.id)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Replicate stream failed: {exc}", cause=exc) from exc
        raise UpstreamError("Replicate stream ended before the done event")
