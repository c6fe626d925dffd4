"""Pydantic request schemas for API endpoints."""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


class ContentPart(BaseModel):
    type: str
    text: Optional[str] = None
    image_url: Optional[Union[str, Dict[str, Any]]] = None
    url: Optional[str] = None

    class Config:
        extra = "allow"


class ChatMessage(BaseModel):
    role: str
    content: Optional[Union[str, List[ContentPart]]] = None
    name: Optional[str] = None

    class Config:
        extra = "allow"


class ChatCompletionsRequest(BaseModel):
    model: Optional[str] = None
    messages: List[ChatMessage]
    # Only a JSON true selects streaming; any other value means a batch call.
    stream: Any = None

    class Config:
        # Sampling parameters and other OpenAI fields are accepted and ignored.
        extra = "allow"
