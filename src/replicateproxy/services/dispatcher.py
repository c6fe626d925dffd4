"""Upstream calls with credential rotation on failure."""
from typing import Iterator, Optional

from ..core.rotator import CredentialRotator
from ..utils.logging import log_event
from .messages import ModelInput
from .replicate_service import UpstreamEvent

MAX_ROTATION_RETRIES = 3


def join_output(output) -> str:
    """Language models on Replicate return a list of text chunks."""
    if isinstance(output, (list, tuple)):
        return "".join(str(item) for item in output)
    return str(output)


class UpstreamDispatcher:
    """Runs one model call, switching to the next API key after each failure.

    A failed attempt restarts the whole call from the beginning. For streams
    this means events already yielded before the failure are not taken back:
    the consumer may see the leading content twice.
    """

    def __init__(self, rotator: CredentialRotator, model_id: str, max_retries: Optional[int] = None):
        self._rotator = rotator
        self.model_id = model_id
        if max_retries is None:
            max_retries = min(rotator.pool_size, MAX_ROTATION_RETRIES)
        self.max_retries = max_retries

    def set_model_id(self, model_id: str) -> None:
        self.model_id = model_id

    def _checkout(self):
        index = self._rotator.next_index()
        return self._rotator.client(index), self._rotator.label(index)

    def _log_attempt(self, mode: str, attempt: int, key: str) -> None:
        log_event(
            10,
            "upstream_attempt",
            mode=mode,
            attempt=attempt + 1,
            max_attempts=self.max_retries + 1,
            model=self.model_id,
            key=key,
        )

    def _log_failure(self, mode: str, attempt: int, key: str, exc: Exception) -> None:
        log_event(
            40,
            "upstream_failure",
            mode=mode,
            attempt=attempt + 1,
            max_attempts=self.max_retries + 1,
            model=self.model_id,
            key=key,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def dispatch_stream(self, model_input: ModelInput) -> Iterator[UpstreamEvent]:
        """Yield upstream events, retrying the whole stream on failure."""
        client, key = self._checkout()
        payload = model_input.to_payload()
        attempt = 0
        while True:
            try:
                self._log_attempt("stream", attempt, key)
                for event in client.stream(self.model_id, payload):
                    yield event
                return
            except Exception as exc:
                self._log_failure("stream", attempt, key, exc)
                if attempt >= self.max_retries:
                    log_event(40, "upstream_exhausted", mode="stream", attempts=attempt + 1, model=self.model_id)
                    raise
                client, key = self._checkout()
                attempt += 1
                log_event(10, "upstream_rotate", mode="stream", next_attempt=attempt + 1, key=key)

    def dispatch_once(self, model_input: ModelInput) -> str:
        """Run the model to completion and return its text output."""
        client, key = self._checkout()
        payload = model_input.to_payload()
        attempt = 0
        while True:
            try:
                self._log_attempt("once", attempt, key)
                output = client.run(self.model_id, payload)
                log_event(10, "upstream_output", model=self.model_id, output_type=type(output).__name__)
                return join_output(output)
            except Exception as exc:
                self._log_failure("once", attempt, key, exc)
                if attempt >= self.max_retries:
                    log_event(40, "upstream_exhausted", mode="once", attempts=attempt + 1, model=self.model_id)
                    raise
                client, key = self._checkout()
                attempt += 1
                log_event(10, "upstream_rotate", mode="once", next_attempt=attempt + 1, key=key)
