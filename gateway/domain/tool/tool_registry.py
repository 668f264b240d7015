from typing import Dict, List, Optional

import structlog
from langchain_core.tools import BaseTool

from gateway.config import GatewayConfig
from gateway.domain.agent.approval_gate import ApprovalPolicy
from gateway.domain.memory.memory_manager import MemoryManager
from .filesystem import create_filesystem_tools
from .memory import create_memory_tools
from .shell import create_shell_tool

logger = structlog.get_logger(__name__)


def build_tool_registry(
    config: GatewayConfig,
    memory_manager: MemoryManager,
    approval_policy: Optional[ApprovalPolicy] = None,
    extra_tools: Optional[List[BaseTool]] = None,
) -> Dict[str, BaseTool]:
    """Build the tools available to one connection, keyed by name.

    Memory reads never ask for approval; memory writes ask once per session.
    """

    tools: Dict[str, BaseTool] = {}
    tools.update(create_filesystem_tools(config.security_mode, config.workspace_dir))
    tools["execute_command"] = create_shell_tool(config.security_mode, config.workspace_dir)
    tools.update(create_memory_tools(memory_manager))

    for tool in extra_tools or []:
        if tool.name in tools:
            logger.warning("Tool name collision, keeping built-in", tool=tool.name)
            continue
        tools[tool.name] = tool

    if approval_policy is not None:
        approval_policy.per_tool["memory_read"] = "auto"
        approval_policy.per_tool["memory_write"] = "session"

    logger.info("Tool registry built", tool_count=len(tools), security_mode=config.security_mode)
    return tools
