from typing import List, Optional, Sequence
import asyncio
import structlog
from pydantic import BaseModel, Field

from gateway.domain.llm.pricing import get_model_pricing
from gateway.domain.llm.tokens import estimate_tokens
from gateway.domain.memory.memory_manager import MemoryContext, MemoryManager
from gateway.domain.context.threads import ThreadManager
from gateway.domain.models.session import Message

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
IDENTITY_TOKEN_BUDGET = 3000


class ContextSection(BaseModel):
    """One measured slice of the prompt"""
    name: str
    content: str
    byte_count: int
    token_estimate: int
    cost_estimate: float


class ContextTotals(BaseModel):
    byte_count: int = 0
    token_estimate: int = 0
    cost_estimate: float = 0.0


class AssembledContext(BaseModel):
    """Exact prompt for a model call plus its per-section measurements"""
    messages: List[Message] = Field(default_factory=list)
    system: str = ""
    sections: List[ContextSection] = Field(default_factory=list)
    totals: ContextTotals = Field(default_factory=ContextTotals)

    def section(self, name: str) -> Optional[ContextSection]:
        return next((s for s in self.sections if s.name == name), None)


def measure_section(name: str, content: str, input_per_mtok: float) -> ContextSection:
    token_estimate = estimate_tokens(content)
    return ContextSection(
        name=name,
        content=content,
        byte_count=len(content.encode("utf-8")),
        token_estimate=token_estimate,
        cost_estimate=token_estimate / 1_000_000 * input_per_mtok,
    )


def format_history(messages: Sequence[Message]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


class ContextAssembler:
    """Builds the system prompt and message list for a turn.

    The base prompt is composed by the thread manager from active global
    prompts and the thread's own prompt; when both are empty the configured
    ``system_prompt`` is used instead.
    """

    def __init__(
        self,
        memory_manager: Optional[MemoryManager] = None,
        system_prompt: Optional[str] = None,
        thread_manager: Optional[ThreadManager] = None,
    ):
        self.memory_manager = memory_manager
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.thread_manager = thread_manager

    def _memory_context(self) -> MemoryContext:
        if self.memory_manager is None:
            return MemoryContext()
        try:
            return self.memory_manager.get_memory_context()
        except (OSError, ValueError) as e:
            logger.warning("Memory context unavailable, continuing without it", error=str(e))
            return MemoryContext()

    async def base_prompt(self, thread_id: Optional[str] = None) -> str:
        if self.thread_manager is None:
            return self.system_prompt
        try:
            composed = await self.thread_manager.build_system_prompt(thread_id)
        except Exception as e:
            logger.warning("Prompt store unavailable, using default prompt", thread_id=thread_id, error=str(e))
            return self.system_prompt
        return composed or self.system_prompt

    async def assemble(
        self,
        messages: Sequence[Message],
        user_message: str,
        model: str,
        thread_id: Optional[str] = None,
        tool_descriptions: Optional[str] = None,
    ) -> AssembledContext:
        """Assemble the prompt for ``user_message`` on top of prior ``messages``"""

        pricing = get_model_pricing(model)
        base_prompt = await self.base_prompt(thread_id)
        memory = await asyncio.to_thread(self._memory_context)

        system_parts = [base_prompt]
        if memory.soul:
            system_parts.append(f"\n\n# Your Identity\n{memory.soul}")
        if memory.long_term_memory:
            system_parts.append(f"\n\n# Long-Term Memory\n{memory.long_term_memory}")
        if memory.recent_activity:
            system_parts.append(f"\n\n# Recent Activity\n{memory.recent_activity}")

        identity_tokens = estimate_tokens(memory.soul)
        if identity_tokens > IDENTITY_TOKEN_BUDGET:
            logger.warning(
                "Identity exceeds token budget, consider trimming SOUL.md",
                identity_tokens=identity_tokens,
                budget=IDENTITY_TOKEN_BUDGET,
            )

        price = pricing.input_per_mtok
        sections = [
            measure_section("system_prompt", base_prompt, price),
            measure_section("soul", memory.soul, price),
            measure_section("long_term_memory", memory.long_term_memory, price),
            measure_section("recent_activity", memory.recent_activity, price),
            measure_section("skills", memory.skills, price),
            measure_section("history", format_history(messages), price),
            measure_section("tools", tool_descriptions or "", price),
            measure_section("user_message", user_message, price),
        ]

        totals = ContextTotals()
        for section in sections:
            totals.byte_count += section.byte_count
            totals.token_estimate += section.token_estimate
            totals.cost_estimate += section.cost_estimate

        logger.debug(
            "Context assembled",
            model=model,
            thread_id=thread_id,
            token_estimate=totals.token_estimate,
        )

        return AssembledContext(
            messages=[*messages, Message(role="user", content=user_message)],
            system="".join(system_parts),
            sections=sections,
            totals=totals,
        )

    async def inspect(
        self, messages: Sequence[Message], model: str, thread_id: Optional[str] = None
    ) -> AssembledContext:
        """Measure a session's current context without adding a new message"""
        return await self.assemble(messages, "", model, thread_id=thread_id)
