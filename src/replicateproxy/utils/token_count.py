"""Token counting helpers (best-effort)."""
from __future__ import annotations

import logging
from functools import lru_cache

import tiktoken

DEFAULT_ENCODING = "o200k_base"

logger = logging.getLogger("replicateproxy.tokens")


@lru_cache(maxsize=4)
def _get_encoder(encoding_name: str = DEFAULT_ENCODING):
    try:
        return tiktoken.get_encoding(encoding_name)
    except Exception as exc:
        logger.warning("tiktoken encoding %s unavailable: %s", encoding_name, exc)
        return None


def count_text_tokens(text: str | None, encoding_name: str = DEFAULT_ENCODING) -> int:
    if not text:
        return 0
    encoder = _get_encoder(encoding_name)
    if encoder:
        return len(encoder.encode(text, disallowed_special=()))
    # fallback heuristic: ~4 chars per token
    return max(1, len(text) // 4)
