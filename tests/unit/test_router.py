from gateway.domain.routing.router import (
    DEFAULT_TIERS,
    classify_complexity,
    get_alternatives,
    route_message,
)


def always(provider):
    return True


def test_complex_keyword_routes_high():
    tier, confidence, reason = classify_complexity("Please refactor the billing module", 2)
    assert tier == "high"
    assert confidence == 1.0
    assert "refactor" in reason


def test_long_conversation_routes_high():
    tier, confidence, _ = classify_complexity("and then?", 21)
    assert tier == "high"
    assert confidence == 0.7


def test_greeting_routes_budget():
    tier, confidence, reason = classify_complexity("hello there", 0)
    assert tier == "budget"
    assert confidence == 1.0
    assert "hello" in reason


def test_simple_keyword_in_long_history_is_standard():
    tier, confidence, reason = classify_complexity("thanks", 8)
    assert tier == "standard"
    assert confidence == 0.5
    assert reason == "Default routing"


def test_high_wins_over_budget():
    # "what is" is a budget keyword, "compare" a complex one
    tier, _, _ = classify_complexity("what is faster? compare both", 0)
    assert tier == "high"


def test_route_message_uses_tier_model():
    decision = route_message("hi", 0, always)
    provider, _, model = DEFAULT_TIERS["budget"].partition(":")
    assert decision.tier == "budget"
    assert decision.provider == provider
    assert decision.model == model
    assert decision.model_id == DEFAULT_TIERS["budget"]


def test_route_message_falls_back_to_available_provider():
    tiers = {
        "high": "anthropic:big",
        "standard": "openai:gpt-4o",
        "budget": "anthropic:small",
    }
    decision = route_message("hello", 0, lambda provider: provider == "openai", tiers)
    assert decision.tier == "standard"
    assert decision.provider == "openai"
    assert decision.reason.startswith("Fallback")
    assert decision.confidence == 0.8


def test_route_message_without_any_provider_keeps_original():
    decision = route_message("hello", 0, lambda provider: False)
    assert decision.tier == "budget"
    assert decision.confidence == 1.0


def test_alternatives_exclude_chosen_and_duplicates():
    tiers = {
        "high": "anthropic:big",
        "standard": "anthropic:big",
        "budget": "anthropic:small",
    }
    decision = route_message("design a system", 0, always, tiers)
    alternatives = get_alternatives(decision, tiers)
    assert [a.model for a in alternatives] == ["small"]
