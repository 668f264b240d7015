from typing import Dict, Optional
import structlog
from pydantic import BaseModel

from gateway.domain.memory.memory_manager import MemoryManager
from .assembler import AssembledContext

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONTEXT_TOKENS = 200_000
DEFAULT_THRESHOLD = 0.70
FLUSH_PREFIX = "[Memory Pressure Flush]\n\n"

# Which assembler sections count toward each pressure bucket
CATEGORY_SECTIONS: Dict[str, tuple] = {
    "system": ("system_prompt", "soul", "long_term_memory", "recent_activity"),
    "conversation": ("history", "user_message"),
    "memory": ("skills", "tools"),
}


class PressureReading(BaseModel):
    usage: float
    should_flush: bool
    total_tokens: int
    remaining_tokens: int


def categorize(context: AssembledContext) -> Dict[str, int]:
    """Sum section token estimates into system / memory / conversation buckets"""
    by_name = {s.name: s.token_estimate for s in context.sections}
    return {
        category: sum(by_name.get(name, 0) for name in names)
        for category, names in CATEGORY_SECTIONS.items()
    }


class MemoryPressureDetector:
    """Decides whether older conversation content must be evicted"""

    def __init__(self, max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS, threshold: float = DEFAULT_THRESHOLD):
        self.max_context_tokens = max_context_tokens
        self.threshold = threshold

    def check(self, categories: Dict[str, int]) -> PressureReading:
        total = categories.get("system", 0) + categories.get("memory", 0) + categories.get("conversation", 0)
        usage = total / self.max_context_tokens if self.max_context_tokens > 0 else 1.0
        return PressureReading(
            usage=usage,
            should_flush=usage >= self.threshold,
            total_tokens=total,
            remaining_tokens=max(self.max_context_tokens - total, 0),
        )

    def check_and_flush(
        self,
        context: AssembledContext,
        memory_manager: Optional[MemoryManager],
    ) -> PressureReading:
        """Check pressure and, when over threshold, move older history to the daily log.

        The flush is best-effort: a failure is logged and never blocks the turn.
        """
        reading = self.check(categorize(context))
        if not reading.should_flush:
            return reading

        logger.warning(
            "Memory pressure threshold reached",
            usage=round(reading.usage, 3),
            total_tokens=reading.total_tokens,
        )
        if memory_manager is None:
            return reading

        history = context.section("history")
        lines = history.content.split("\n") if history and history.content else []
        older = lines[: len(lines) // 2]
        if not older:
            return reading

        try:
            memory_manager.append_daily_log(FLUSH_PREFIX + "\n".join(older))
            logger.info("Flushed older history to daily log", lines=len(older))
        except Exception as e:
            logger.error("Memory flush failed", error=str(e), exc_info=True)
        return reading
