"""Application factory and entrypoint."""
import os
import time
from functools import partial

from flask import Flask

from .config import get_config_errors, get_server_port
from .rotator import CredentialRotator, mask_credential
from .settings import get_settings
from ..api.handlers import register_routes
from ..api.middleware import register_middlewares
from ..services.dispatcher import UpstreamDispatcher
from ..services.replicate_service import ReplicateClient
from ..utils.logging import log_event, setup_logging


def build_rotator(settings) -> CredentialRotator:
    """Create one Replicate client per configured API key."""
    factory = partial(
        ReplicateClient,
        base_url=settings.replicate_base_url,
        timeout=settings.upstream_timeout,
        poll_interval=settings.upstream_poll_interval,
    )
    return CredentialRotator(settings.replicate_api_keys, factory)


def create_app(settings=None, rotator=None) -> Flask:
    """Create and configure the Flask application."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_content_length
    app.config["APP_STARTED_AT"] = time.time()
    app.config["SETTINGS"] = settings

    rotator = rotator or build_rotator(settings)
    dispatcher = UpstreamDispatcher(rotator, settings.default_model_id)
    app.extensions["replicateproxy"] = {"rotator": rotator, "dispatcher": dispatcher}
    log_event(
        20,
        "app_configured",
        model=settings.default_model_id,
        api_keys=[mask_credential(key) for key in settings.replicate_api_keys],
        max_retries=dispatcher.max_retries,
    )

    register_middlewares(app, settings)
    register_routes(app, settings)
    return app


def get_startup_errors(settings):
    """Configuration faults that make the proxy unusable."""
    errors = []
    if not settings.replicate_api_keys:
        errors.append("REPLICATE_API_KEYS must list at least one Replicate API token")
    if not settings.auth_key:
        errors.append("AUTH_KEY must be set")
    return errors


def run() -> None:
    """Run the Flask development server."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    startup_errors = get_startup_errors(settings)
    if startup_errors:
        for err in startup_errors:
            log_event(50, "startup_error", error=err)
        raise SystemExit("Missing required configuration; see startup_error log lines.")

    if settings.strict_config:
        config_errors = get_config_errors()
        if config_errors:
            for err in config_errors:
                log_event(40, "config_error", error=err)
            raise SystemExit("Strict config enabled; fix config.json errors.")

    app = create_app(settings)
    port = get_server_port() or int(os.getenv("PORT", 4000))
    debug = os.getenv("FLASK_DEBUG", "").lower() in ("1", "true", "yes", "on")
    app.run(host="0.0.0.0", port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    run()
