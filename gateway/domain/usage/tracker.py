from typing import List, Optional
import structlog

from gateway.domain.llm.pricing import calculate_cost
from gateway.domain.models.usage import CostBreakdown, TokenUsage, UsageRecord, UsageTotals
from gateway.infrastructure.persistence.repository import UsageRepository

logger = structlog.get_logger(__name__)


class UsageTracker:
    """Wraps the usage repository with cost calculation and logging"""

    def __init__(self, repository: UsageRepository):
        self.repository = repository

    async def record(self, session_id: str, model: str, usage: TokenUsage) -> CostBreakdown:
        """Record a completed model request and return its cost"""
        total_tokens = usage.total_tokens or usage.input_tokens + usage.output_tokens
        cost = calculate_cost(model, usage.input_tokens, usage.output_tokens)
        await self.repository.record(
            UsageRecord(
                session_id=session_id,
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=total_tokens,
                cost=cost.total_cost,
            )
        )
        logger.info(
            "Usage recorded",
            model=model,
            total_tokens=total_tokens,
            cost=round(cost.total_cost, 6),
        )
        return cost

    async def by_session(self, session_id: str) -> List[UsageRecord]:
        return await self.repository.by_session(session_id)

    async def totals(self, session_id: Optional[str] = None) -> UsageTotals:
        return await self.repository.totals(session_id)
