"""Gateway configuration loaded from YAML with environment overrides."""

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """A model provider the gateway may route to."""

    # Name understood by langchain's init_chat_model, e.g. "google_genai"
    model_provider: Optional[str] = None
    api_key_env: Optional[str] = None
    enabled: bool = True


class ToolApprovalConfig(BaseModel):
    """Default approval tier and per-tool overrides."""

    default_tier: Literal["auto", "session", "always"] = "session"
    per_tool: Dict[str, Literal["auto", "session", "always"]] = Field(default_factory=dict)


def _default_providers() -> Dict[str, ProviderConfig]:
    return {
        "anthropic": ProviderConfig(api_key_env="ANTHROPIC_API_KEY"),
        "openai": ProviderConfig(api_key_env="OPENAI_API_KEY"),
        "google": ProviderConfig(model_provider="google_genai", api_key_env="GOOGLE_API_KEY"),
        "ollama": ProviderConfig(enabled=False),
    }


class GatewayConfig(BaseModel):
    """Top-level configuration model."""

    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    database_url: Optional[str] = None

    agent_id: str = "default"
    workspace_dir: Optional[str] = None
    memory_dir: str = Field(default_factory=lambda: os.path.join(os.path.expanduser("~"), ".agent-gateway"))
    security_mode: Literal["full-control", "limited-control"] = "limited-control"
    system_prompt: Optional[str] = None

    default_model: str = "anthropic:claude-sonnet-4-5-20250929"
    model_tiers: Optional[Dict[Literal["high", "standard", "budget"], str]] = None
    routing_mode: Literal["auto", "manual"] = "auto"
    providers: Dict[str, ProviderConfig] = Field(default_factory=_default_providers)

    max_context_tokens: int = 200_000
    pressure_threshold: float = 0.70
    max_agent_steps: int = 10
    approval_timeout_seconds: float = 60.0
    tool_approval: ToolApprovalConfig = Field(default_factory=ToolApprovalConfig)

    workflow_dirs: List[str] = Field(default_factory=list)


def load_config(path: Optional[str] = None) -> GatewayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GATEWAY_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("GATEWAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GatewayConfig(**data)
    else:
        config = GatewayConfig()

    env_db_url = os.getenv("GATEWAY_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    if os.getenv("GATEWAY_HOST"):
        config.host = os.environ["GATEWAY_HOST"]
    if os.getenv("GATEWAY_PORT"):
        config.port = int(os.environ["GATEWAY_PORT"])
    if os.getenv("GATEWAY_LOG_LEVEL"):
        config.log_level = os.environ["GATEWAY_LOG_LEVEL"]
    return config
