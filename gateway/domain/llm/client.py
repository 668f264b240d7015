"""Model provider boundary.

Every provider is consumed through ``ModelClient``: a streaming call that
yields typed chunks (text deltas, tool calls, a final finish chunk carrying
usage) and a one-shot completion. ``LangChainModelClient`` adapts any
langchain_core chat model to that interface.
"""

import uuid
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol, Sequence, Union

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)
from langchain_core.tools import BaseTool
from pydantic import BaseModel, Field

from gateway.domain.errors import LLMError
from gateway.domain.models.session import Message
from gateway.domain.models.usage import TokenUsage

logger = structlog.get_logger(__name__)


class TextDelta(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolCallRequest(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class StreamFinish(BaseModel):
    type: Literal["finish"] = "finish"
    finish_reason: str = "stop"
    usage: TokenUsage = Field(default_factory=TokenUsage)


StreamChunk = Union[TextDelta, ToolCallRequest, StreamFinish]


class ModelClient(Protocol):
    """What the agent loop, workflow executor and heartbeat need from a model"""

    model_id: str

    def stream(
        self,
        messages: Sequence[BaseMessage],
        system: Optional[str] = None,
        tools: Optional[Sequence[BaseTool]] = None,
    ) -> AsyncIterator[StreamChunk]:
        ...

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        ...


def content_text(content: Union[str, List[Any]]) -> str:
    """Flatten langchain message content (plain string or content blocks) to text"""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def to_langchain_messages(messages: Sequence[Message]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "user":
            converted.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(SystemMessage(content=message.content))
    return converted


def _usage_from(message: Optional[AIMessageChunk]) -> TokenUsage:
    metadata = getattr(message, "usage_metadata", None) if message is not None else None
    if not metadata:
        return TokenUsage()
    input_tokens = metadata.get("input_tokens", 0) or 0
    output_tokens = metadata.get("output_tokens", 0) or 0
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=metadata.get("total_tokens") or input_tokens + output_tokens,
    )


def _finish_reason_from(message: Optional[AIMessageChunk]) -> str:
    if message is None:
        return "stop"
    metadata = message.response_metadata or {}
    reason = metadata.get("stop_reason") or metadata.get("finish_reason") or "stop"
    if reason in ("max_tokens", "length", "MAX_TOKENS"):
        return "length"
    return "stop"


class LangChainModelClient:
    """ModelClient backed by a langchain_core chat model"""

    def __init__(self, model_id: str, chat_model: BaseChatModel):
        self.model_id = model_id
        self.chat_model = chat_model

    async def stream(
        self,
        messages: Sequence[BaseMessage],
        system: Optional[str] = None,
        tools: Optional[Sequence[BaseTool]] = None,
    ) -> AsyncIterator[StreamChunk]:
        runnable = self.chat_model.bind_tools(list(tools)) if tools else self.chat_model
        payload: List[BaseMessage] = [SystemMessage(content=system)] if system else []
        payload.extend(messages)

        aggregate: Optional[AIMessageChunk] = None
        try:
            async for chunk in runnable.astream(payload):
                text = content_text(chunk.content)
                if text:
                    yield TextDelta(text=text)
                aggregate = chunk if aggregate is None else aggregate + chunk
        except Exception as e:
            logger.error("Model stream failed", model=self.model_id, error=str(e))
            raise LLMError(str(e)) from e

        tool_calls = aggregate.tool_calls if aggregate is not None else []
        for call in tool_calls:
            yield ToolCallRequest(
                id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=call["name"],
                args=call.get("args") or {},
            )

        yield StreamFinish(
            finish_reason="tool-calls" if tool_calls else _finish_reason_from(aggregate),
            usage=_usage_from(aggregate),
        )

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        payload: List[BaseMessage] = [SystemMessage(content=system)] if system else []
        payload.append(HumanMessage(content=prompt))
        try:
            result = await self.chat_model.ainvoke(payload)
        except Exception as e:
            logger.error("Model completion failed", model=self.model_id, error=str(e))
            raise LLMError(str(e)) from e
        return content_text(result.content)
