from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field


MAX_MESSAGE_LENGTH = 1000


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH, strict=True)
    # Accepted from the frontend but never read back.
    timestamp: Optional[Any] = None

class ChatResponse(BaseModel):
    response: str
    timestamp: str

class HealthCheck(BaseModel):
    status: str
    timestamp: str
    uptime: float

class ErrorResponse(BaseModel):
    error: str


class UpstreamMessage(BaseModel):
    role: str
    content: str

class UpstreamChatRequest(BaseModel):
    messages: List[UpstreamMessage]
    chatbotId: str
    stream: bool = False
    temperature: float

class UpstreamChatReply(BaseModel):
    text: Optional[str] = None
