from typing import List, Literal, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


MessageRole = Literal["user", "assistant", "system"]


class Message(BaseModel):
    """A single message in a conversation"""
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    token_count: Optional[int] = None


class Session(BaseModel):
    """A conversation with a stable session key"""
    id: str
    session_key: str
    model: str
    created_at: datetime = Field(default_factory=utcnow)
    messages: List[Message] = Field(default_factory=list)


class SessionSummary(BaseModel):
    """Session listing entry"""
    session_id: str
    session_key: str
    model: str
    created_at: datetime
    message_count: int
