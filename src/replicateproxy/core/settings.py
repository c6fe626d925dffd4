"""Environment-driven settings for the Replicate proxy."""
from dataclasses import dataclass
from functools import lru_cache
import os
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

ANTI_ECHO_DIRECTIVE = (
    "请直接回答上述问题，提供完整详细的回答，然后停止。不要使用‘user：xxxx’模拟用户提问。"
    "严禁生成任何形式的'user:'等角色标记，不要模拟上下文中的‘user：xxxx，assistant：xxxx这种对话格式’，"
    "只需回答用户提出的问题即可。"
)
DEFAULT_MODEL_ID = "anthropic/claude-3.7-sonnet"
DEFAULT_PROXY_MODEL_NAME = "claude-3.7-sonnet"
DEFAULT_BASE_URL = "https://api.replicate.com/v1"


def _split_keys(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _optional_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass(frozen=True)
class Settings:
    log_level: str
    auth_key: str
    replicate_api_keys: Tuple[str, ...]
    default_model_id: str
    proxy_model_name: str
    replicate_base_url: str
    upstream_timeout: Optional[float]
    upstream_poll_interval: float
    max_tokens: int
    max_image_resolution: float
    anti_echo_directive: str
    stream_chunk_delay: float
    max_body_mb: float
    strict_config: bool
    log_dir: str

    @property
    def max_content_length(self) -> int:
        return int(self.max_body_mb * 1024 * 1024)


@lru_cache
def get_settings() -> Settings:
    """Load settings from environment variables."""
    keys = _split_keys(os.getenv("REPLICATE_API_KEYS", ""))
    if not keys:
        keys = _split_keys(os.getenv("REPLICATE_API_TOKEN", ""))
    return Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        auth_key=os.getenv("AUTH_KEY", ""),
        replicate_api_keys=keys,
        default_model_id=os.getenv("DEFAULT_MODEL_ID", DEFAULT_MODEL_ID),
        proxy_model_name=os.getenv("PROXY_MODEL_NAME", DEFAULT_PROXY_MODEL_NAME),
        replicate_base_url=os.getenv("REPLICATE_BASE_URL", DEFAULT_BASE_URL),
        upstream_timeout=_optional_float(os.getenv("UPSTREAM_TIMEOUT")),
        upstream_poll_interval=float(os.getenv("UPSTREAM_POLL_INTERVAL", "0.5")),
        max_tokens=int(os.getenv("MAX_TOKENS", "64000")),
        max_image_resolution=float(os.getenv("MAX_IMAGE_RESOLUTION", "0.5")),
        anti_echo_directive=os.getenv("ANTI_ECHO_DIRECTIVE") or ANTI_ECHO_DIRECTIVE,
        stream_chunk_delay=float(os.getenv("STREAM_CHUNK_DELAY", "0.005")),
        max_body_mb=float(os.getenv("MAX_BODY_MB", "20")),
        strict_config=os.getenv("STRICT_CONFIG", "").lower() in ("1", "true", "yes", "on"),
        log_dir=os.getenv(
            "LOG_DIR",
            os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "..", "logs")),
        ),
    )
