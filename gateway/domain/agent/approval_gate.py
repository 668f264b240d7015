from typing import Dict, Literal, Optional, Set
from pydantic import BaseModel, Field

from gateway.config import ToolApprovalConfig

ApprovalTier = Literal["auto", "session", "always"]


class ApprovalPolicy(BaseModel):
    """When a tool call needs a human decision.

    ``auto`` never asks, ``always`` asks every time and ``session`` asks once
    and then remembers the tool for the rest of the session.
    """
    default_tier: ApprovalTier = "session"
    per_tool: Dict[str, ApprovalTier] = Field(default_factory=dict)
    session_approvals: Set[str] = Field(default_factory=set)


def create_approval_policy(config: Optional[ToolApprovalConfig] = None) -> ApprovalPolicy:
    if config is None:
        return ApprovalPolicy()
    return ApprovalPolicy(default_tier=config.default_tier, per_tool=dict(config.per_tool))


def get_effective_tier(tool_name: str, policy: ApprovalPolicy) -> ApprovalTier:
    return policy.per_tool.get(tool_name, policy.default_tier)


def check_approval(tool_name: str, policy: ApprovalPolicy) -> bool:
    """Whether calling ``tool_name`` needs approval right now"""
    tier = get_effective_tier(tool_name, policy)
    if tier == "auto":
        return False
    if tier == "session":
        return tool_name not in policy.session_approvals
    return True


def record_session_approval(tool_name: str, policy: ApprovalPolicy) -> None:
    policy.session_approvals.add(tool_name)
