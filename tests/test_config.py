import json

import pytest

from conftest import make_settings
from replicateproxy.api.middleware import check_bearer
from replicateproxy.core import config
from replicateproxy.core.app import build_rotator, get_startup_errors
from replicateproxy.core.settings import get_settings


def _write_config(tmp_path, payload):
    (tmp_path / "config.json").write_text(json.dumps(payload))


def test_missing_config_file_falls_back_to_proxy_model():
    models = config.get_models_response("claude-3.7-sonnet", created=1700000000)

    assert [m["id"] for m in models] == ["claude-3.7-sonnet"]
    assert models[0]["created"] == 1700000000
    assert models[0]["owned_by"] == "replicate"
    assert config.get_cors_config() == {"origins": ["*"], "allow_credentials": False}


def test_validate_config_reports_problems():
    errors = config.validate_config(
        {"models": ["", {"owned_by": "x"}, 3], "server": {"port": "abc"}, "cors": {"origins": 5}, "logging": []}
    )

    assert "model id must be a non-empty string" in errors
    assert "model entry missing id" in errors
    assert "model entry must be an object or string" in errors
    assert "server.port must be an integer" in errors
    assert "cors.origins must be a list or comma-separated string" in errors
    assert "logging must be an object" in errors


def test_config_values_are_read_from_file(tmp_path):
    _write_config(
        tmp_path,
        {
            "server": {"port": 8080},
            "cors": {"origins": "https://a.example, https://b.example", "allow_credentials": True},
            "logging": {"include_headers": True, "redact_headers": ["x-api-key"]},
        },
    )

    assert config.get_server_port() == 8080
    assert config.get_cors_config() == {
        "origins": ["https://a.example", "https://b.example"],
        "allow_credentials": True,
    }
    logging_cfg = config.get_logging_config()
    assert logging_cfg["include_headers"] is True
    assert logging_cfg["redact_headers"] == ["x-api-key", "authorization"]
    assert config.get_config_errors() == []


def test_unreadable_config_is_treated_as_empty(tmp_path):
    (tmp_path / "config.json").write_text("{broken")

    assert config.get_server_port() is None
    assert config.get_config_errors() == []


@pytest.mark.parametrize(
    "header, expected_code",
    [
        (None, "missing_auth_header"),
        ("", "missing_auth_header"),
        ("Token abc", "missing_auth_header"),
        ("Bearer nope", "invalid_auth_key"),
        ("Bearer ", "invalid_auth_key"),
    ],
)
def test_check_bearer_failures(header, expected_code):
    message, code = check_bearer(header, "secret")

    assert code == expected_code
    assert message.startswith("Unauthorized")


def test_check_bearer_accepts_matching_key():
    assert check_bearer("Bearer secret", "secret") is None
    assert check_bearer("BEARER secret ", "secret") is None


def test_startup_errors(tmp_path):
    assert get_startup_errors(make_settings(tmp_path)) == []
    errors = get_startup_errors(make_settings(tmp_path, replicate_api_keys=(), auth_key=""))

    assert len(errors) == 2


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("REPLICATE_API_KEYS", " r8_a, ,r8_b ")
    monkeypatch.setenv("AUTH_KEY", "k")
    monkeypatch.setenv("MAX_TOKENS", "1024")
    monkeypatch.setenv("UPSTREAM_TIMEOUT", "")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.replicate_api_keys == ("r8_a", "r8_b")
    assert settings.max_tokens == 1024
    assert settings.upstream_timeout is None


def test_settings_fall_back_to_single_token(monkeypatch):
    monkeypatch.delenv("REPLICATE_API_KEYS", raising=False)
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_only")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.replicate_api_keys == ("r8_only",)


def test_build_rotator_creates_one_client_per_key(tmp_path):
    rotator = build_rotator(make_settings(tmp_path, replicate_api_keys=("r8_a", "r8_b", "r8_c")))

    assert len(rotator) == 3
    assert rotator.label(2) == "***r8_c"
