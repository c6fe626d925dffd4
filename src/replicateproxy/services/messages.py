"""Turn OpenAI chat messages into Replicate's prompt/system_prompt/image input."""
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.settings import ANTI_ECHO_DIRECTIVE
from ..utils.errors import EmptyConversation
from ..utils.logging import log_event

IMAGE_PART_TYPES = ("image_url", "image", "input_image")


@dataclass
class NormalizedMessages:
    prompt: str
    system_prompt: str
    image_urls: List[str] = field(default_factory=list)

    @property
    def image_url(self) -> Optional[str]:
        """Upstream accepts one image per call; the most recent one wins."""
        if not self.image_urls:
            return None
        return self.image_urls[-1]


@dataclass(frozen=True)
class ModelInput:
    prompt: str
    system_prompt: str
    max_tokens: int
    max_image_resolution: float
    image: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "prompt": self.prompt,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt,
            "max_image_resolution": self.max_image_resolution,
        }
        if self.image:
            payload["image"] = self.image
        return payload


def _extract_image_url(part):
    if not isinstance(part, dict):
        return None
    url = part.get("url")
    if isinstance(url, str) and url:
        return url
    for key in IMAGE_PART_TYPES:
        value = part.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict):
            nested = value.get("url")
            if isinstance(nested, str) and nested:
                return nested
    return None


def _is_text_part(part) -> bool:
    return isinstance(part, dict) and part.get("type") == "text"


def _part_text(part) -> str:
    text = part.get("text")
    return text if isinstance(text, str) else ""


def extract_system_prompt(messages: List[dict]) -> Tuple[str, List[dict]]:
    """Return (system prompt, non-system messages) without touching the input."""
    pieces = []
    remaining = []
    for message in messages:
        if not isinstance(message, dict):
            continue
        if message.get("role") != "system":
            remaining.append(message)
            continue
        content = message.get("content")
        if isinstance(content, str):
            pieces.append(content + "\n")
        elif isinstance(content, list):
            for part in content:
                if _is_text_part(part) and _part_text(part):
                    pieces.append(_part_text(part) + "\n")
    return "".join(pieces).rstrip(), remaining


def extract_image_urls(messages: List[dict]) -> List[str]:
    """Pull image URLs out of user messages, leaving only their text parts.

    Mutates ``messages`` in place; callers pass a private copy.
    """
    image_urls = []
    for message in messages:
        content = message.get("content")
        if message.get("role") != "user" or not isinstance(content, list):
            continue
        text_only = []
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") in IMAGE_PART_TYPES:
                url = _extract_image_url(part)
                if url:
                    image_urls.append(url)
            elif part.get("type") == "text":
                text_only.append(part)
        message["content"] = text_only
    return image_urls


def _message_text(content) -> str:
    if isinstance(content, list):
        return " ".join(_part_text(part) for part in content if _is_text_part(part))
    return str(content)


def format_conversation(messages: List[dict], directive: str = ANTI_ECHO_DIRECTIVE, require_text: bool = True) -> str:
    """Flatten turns into ``role: text`` lines, closing with the anti-echo line.

    Returns an empty string when no turn carries visible text and
    ``require_text`` is set.
    """
    lines = []
    has_text = False
    for message in messages:
        role = message.get("role")
        content = message.get("content")
        if not role or content is None or content == "":
            continue
        text = _message_text(content)
        if text.strip():
            has_text = True
        lines.append(f"{role}: {text}\n")

    formatted = "".join(lines)
    if formatted and messages and messages[-1].get("role") == "user":
        formatted += f"[{directive}]\n"
    if require_text and not has_text:
        return ""
    return formatted


def normalize_messages(messages, directive: str = ANTI_ECHO_DIRECTIVE) -> NormalizedMessages:
    """Split a chat transcript into prompt, system prompt and image URLs.

    Raises EmptyConversation when there is nothing to send upstream.
    """
    if not isinstance(messages, list) or not messages:
        raise EmptyConversation()

    working = copy.deepcopy(messages)
    system_prompt, working = extract_system_prompt(working)
    image_urls = extract_image_urls(working)
    # Image-only turns are still a valid question for the model.
    prompt = format_conversation(working, directive, require_text=not image_urls)
    if not prompt:
        raise EmptyConversation()

    log_event(
        10,
        "messages_normalized",
        turns=len(working),
        image_count=len(image_urls),
        prompt_chars=len(prompt),
        has_system_prompt=bool(system_prompt),
    )
    return NormalizedMessages(prompt=prompt, system_prompt=system_prompt, image_urls=image_urls)


def build_system_prompt(system_prompt: str, directive: str = ANTI_ECHO_DIRECTIVE) -> str:
    if system_prompt:
        return f"{system_prompt}\n\n{directive}"
    return directive


def build_model_input(
    normalized: NormalizedMessages,
    max_tokens: int,
    max_image_resolution: float,
    directive: str = ANTI_ECHO_DIRECTIVE,
) -> ModelInput:
    """Assemble the upstream input, keeping at most the last image."""
    if len(normalized.image_urls) > 1:
        log_event(10, "multiple_images", count=len(normalized.image_urls), kept="last")
    return ModelInput(
        prompt=normalized.prompt,
        system_prompt=build_system_prompt(normalized.system_prompt, directive),
        max_tokens=max_tokens,
        max_image_resolution=max_image_resolution,
        image=normalized.image_url,
    )
