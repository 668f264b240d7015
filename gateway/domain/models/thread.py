from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime

from .session import utcnow


class Thread(BaseModel):
    """A conversation thread carrying its own system prompt"""
    id: str
    title: str
    system_prompt: Optional[str] = None
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)


class GlobalPrompt(BaseModel):
    """A system prompt fragment applied to every turn while active.

    Active prompts are composed highest ``priority`` first.
    """
    id: int
    name: str
    content: str
    is_active: bool = True
    priority: int = 0
    created_at: datetime = Field(default_factory=utcnow)
