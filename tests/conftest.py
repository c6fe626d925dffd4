from __future__ import annotations

import pytest

from replicateproxy.core.app import create_app
from replicateproxy.core.rotator import CredentialRotator
from replicateproxy.core.settings import ANTI_ECHO_DIRECTIVE, Settings
from replicateproxy.services.replicate_service import UpstreamEvent
from replicateproxy.utils.errors import UpstreamError

AUTH_KEY = "test-secret"


class FakeReplicateClient:
    """Stands in for ReplicateClient; records every call it receives."""

    def __init__(self, key, events=None, output=None, error=None, fail_after=None):
        self.key = key
        self.events = list(events or [])
        self.output = output
        self.error = error
        self.fail_after = fail_after
        self.calls = []

    def stream(self, model_ref, payload):
        self.calls.append(("stream", model_ref, payload))
        for idx, event in enumerate(self.events):
            if self.fail_after is not None and idx == self.fail_after:
                raise self.error
            yield event
        if self.error is not None and self.fail_after is None:
            raise self.error

    def run(self, model_ref, payload):
        self.calls.append(("run", model_ref, payload))
        if self.error is not None:
            raise self.error
        return self.output


def make_events(*chunks, done=True):
    events = [UpstreamEvent(type="output", data=chunk) for chunk in chunks]
    if done:
        events.append(UpstreamEvent(type="done", data="{}"))
    return events


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        log_level="DEBUG",
        auth_key=AUTH_KEY,
        replicate_api_keys=("r8_one", "r8_two"),
        default_model_id="anthropic/claude-3.7-sonnet",
        proxy_model_name="claude-3.7-sonnet",
        replicate_base_url="https://api.replicate.com/v1",
        upstream_timeout=None,
        upstream_poll_interval=0.0,
        max_tokens=64000,
        max_image_resolution=0.5,
        anti_echo_directive=ANTI_ECHO_DIRECTIVE,
        stream_chunk_delay=0.0,
        max_body_mb=1,
        strict_config=False,
        log_dir=str(tmp_path / "logs"),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("LOG_TO_FILE", "false")


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def fake_clients():
    return {}


@pytest.fixture
def client_factory(fake_clients):
    """Builds fake upstream clients; tests tweak them through ``fake_clients``."""

    def factory(key):
        client = FakeReplicateClient(key, events=make_events("Hi", " there"), output=["Hel", "lo"])
        fake_clients[key] = client
        return client

    return factory


@pytest.fixture
def rotator(settings, client_factory):
    return CredentialRotator(settings.replicate_api_keys, client_factory)


@pytest.fixture
def app(settings, rotator):
    return create_app(settings, rotator=rotator)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {AUTH_KEY}"}


@pytest.fixture
def failing_error():
    return UpstreamError("Replicate returned 500: boom", status_code=500)
