from typing import Dict, NamedTuple

from gateway.domain.models.usage import CostBreakdown


class ModelPricing(NamedTuple):
    input_per_mtok: float
    output_per_mtok: float


# USD per million tokens, keyed by bare model id
MODEL_PRICING: Dict[str, ModelPricing] = {
    "claude-opus-4-1-20250805": ModelPricing(15.0, 75.0),
    "claude-sonnet-4-5-20250929": ModelPricing(3.0, 15.0),
    "claude-sonnet-4-20250514": ModelPricing(3.0, 15.0),
    "claude-haiku-4-5-20250929": ModelPricing(1.0, 5.0),
    "gpt-4o": ModelPricing(2.5, 10.0),
    "gpt-4o-mini": ModelPricing(0.15, 0.6),
    "gemini-2.5-pro": ModelPricing(1.25, 10.0),
    "gemini-2.5-flash": ModelPricing(0.3, 2.5),
}

DEFAULT_PRICING = ModelPricing(3.0, 15.0)

# Local providers cost nothing
FREE_PROVIDERS = {"ollama"}


def get_model_pricing(model: str) -> ModelPricing:
    """Pricing for a 'provider:model' or bare model id"""
    provider, _, bare = model.partition(":")
    if not bare:
        bare, provider = provider, ""
    if provider in FREE_PROVIDERS:
        return ModelPricing(0.0, 0.0)
    return MODEL_PRICING.get(bare, DEFAULT_PRICING)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> CostBreakdown:
    pricing = get_model_pricing(model)
    input_cost = input_tokens / 1_000_000 * pricing.input_per_mtok
    output_cost = output_tokens / 1_000_000 * pricing.output_per_mtok
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
    )
