"""Complexity-based model routing with tier fallback.

Rules are evaluated in ascending priority and the first match wins. The
``standard`` rule always matches, so classification always terminates.
"""

import re
from typing import Callable, Dict, List, Literal, NamedTuple, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

ModelTier = Literal["high", "standard", "budget"]

COMPLEX_PATTERN = re.compile(
    r"\b(plan|architect|design|analyze|compare|evaluate|debug complex|refactor"
    r"|explain in detail|write a comprehensive)\b",
    re.IGNORECASE,
)
SIMPLE_PATTERN = re.compile(
    r"\b(hi|hello|hey|thanks|thank you|what is|define|translate|summarize briefly"
    r"|yes|no|ok|sure)\b",
    re.IGNORECASE,
)

LONG_MESSAGE_CHARS = 2000
LONG_HISTORY_MESSAGES = 20
SHORT_MESSAGE_CHARS = 200
SHORT_HISTORY_MESSAGES = 5
FALLBACK_PENALTY = 0.8

FALLBACK_ORDER: Sequence[ModelTier] = ("standard", "high", "budget")
ALTERNATIVE_ORDER: Sequence[ModelTier] = ("high", "standard", "budget")

DEFAULT_TIERS: Dict[ModelTier, str] = {
    "high": "anthropic:claude-sonnet-4-5-20250929",
    "standard": "anthropic:claude-sonnet-4-5-20250929",
    "budget": "anthropic:claude-haiku-4-5-20250929",
}


class RuleMatch(NamedTuple):
    confidence: float
    reason: str


class RoutingRule(NamedTuple):
    tier: ModelTier
    priority: int
    match: Callable[[str, int], Optional[RuleMatch]]


class Classification(NamedTuple):
    tier: ModelTier
    confidence: float
    reason: str


class RoutingDecision(BaseModel):
    tier: ModelTier
    provider: str
    model: str
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"


class Alternative(BaseModel):
    tier: ModelTier
    provider: str
    model: str


def _match_high(message: str, history_length: int) -> Optional[RuleMatch]:
    keyword = COMPLEX_PATTERN.search(message)
    if keyword:
        return RuleMatch(1.0, f"Complex task detected (keyword: '{keyword.group(0).lower()}')")
    if len(message) > LONG_MESSAGE_CHARS:
        return RuleMatch(0.7, f"Complex task detected (message length: {len(message)} chars)")
    if history_length > LONG_HISTORY_MESSAGES:
        return RuleMatch(0.7, f"Complex task detected (long conversation: {history_length} messages)")
    return None


def _match_budget(message: str, history_length: int) -> Optional[RuleMatch]:
    keyword = SIMPLE_PATTERN.search(message)
    if keyword and len(message) < SHORT_MESSAGE_CHARS and history_length < SHORT_HISTORY_MESSAGES:
        return RuleMatch(1.0, f"Simple greeting/response (keyword: '{keyword.group(0).lower()}')")
    return None


def _match_standard(message: str, history_length: int) -> Optional[RuleMatch]:
    return RuleMatch(0.5, "Default routing")


# standard is the catch-all and must sort last
DEFAULT_RULES: List[RoutingRule] = [
    RoutingRule("high", 1, _match_high),
    RoutingRule("budget", 2, _match_budget),
    RoutingRule("standard", 3, _match_standard),
]


def classify_complexity(
    message: str,
    history_length: int,
    rules: Optional[Sequence[RoutingRule]] = None,
) -> Classification:
    """Classify a message into a tier with a confidence score"""
    for rule in sorted(rules or DEFAULT_RULES, key=lambda r: r.priority):
        matched = rule.match(message, history_length)
        if matched is not None:
            return Classification(rule.tier, matched.confidence, matched.reason)
    return Classification("standard", 0.5, "Default routing")


def _split_model_id(model_id: str) -> tuple:
    provider, _, model = model_id.partition(":")
    return provider, model


def route_message(
    message: str,
    history_length: int,
    is_available: Callable[[str], bool],
    tiers: Optional[Dict[ModelTier, str]] = None,
    rules: Optional[Sequence[RoutingRule]] = None,
) -> RoutingDecision:
    """Pick a provider:model for a message, falling back across tiers.

    When no tier's provider is available the original decision is returned
    so the caller surfaces a provider error downstream.
    """
    tiers = tiers or DEFAULT_TIERS
    tier, confidence, reason = classify_complexity(message, history_length, rules)
    provider, model = _split_model_id(tiers[tier])

    if is_available(provider):
        return RoutingDecision(tier=tier, provider=provider, model=model, reason=reason, confidence=confidence)

    for fallback_tier in FALLBACK_ORDER:
        if fallback_tier == tier:
            continue
        fb_provider, fb_model = _split_model_id(tiers[fallback_tier])
        if is_available(fb_provider):
            logger.info(
                "Routing fell back to another tier",
                preferred_provider=provider,
                fallback_provider=fb_provider,
                tier=fallback_tier,
            )
            return RoutingDecision(
                tier=fallback_tier,
                provider=fb_provider,
                model=fb_model,
                reason=f"Fallback: preferred provider '{provider}' unavailable, using {fb_provider}",
                confidence=confidence * FALLBACK_PENALTY,
            )

    logger.warning("No routed provider is available", provider=provider, tier=tier)
    return RoutingDecision(tier=tier, provider=provider, model=model, reason=reason, confidence=confidence)


def get_alternatives(
    decision: RoutingDecision,
    tiers: Optional[Dict[ModelTier, str]] = None,
) -> List[Alternative]:
    """Other tiers' models, de-duplicated, for presenting a choice"""
    tiers = tiers or DEFAULT_TIERS
    seen = {decision.model_id}
    alternatives: List[Alternative] = []
    for tier in ALTERNATIVE_ORDER:
        model_id = tiers[tier]
        if model_id in seen:
            continue
        seen.add(model_id)
        provider, model = _split_model_id(model_id)
        alternatives.append(Alternative(tier=tier, provider=provider, model=model))
    return alternatives
