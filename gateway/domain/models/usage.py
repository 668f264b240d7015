from typing import Dict
from pydantic import BaseModel, Field
from datetime import datetime

from .session import utcnow


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class CostBreakdown(BaseModel):
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0


class UsageRecord(BaseModel):
    """One completed model request"""
    session_id: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost: float
    timestamp: datetime = Field(default_factory=utcnow)


class ModelUsageTotals(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0


class GrandTotal(BaseModel):
    total_cost: float = 0.0
    total_tokens: int = 0
    request_count: int = 0


class UsageTotals(BaseModel):
    per_model: Dict[str, ModelUsageTotals] = Field(default_factory=dict)
    grand_total: GrandTotal = Field(default_factory=GrandTotal)
