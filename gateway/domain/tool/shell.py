import asyncio
from typing import Any, Dict, Optional

import structlog
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

MAX_OUTPUT_SIZE = 50 * 1024
DEFAULT_TIMEOUT_MS = 30_000


class ExecuteCommandInput(BaseModel):
    command: str = Field(description="The shell command to execute")
    cwd: Optional[str] = Field(default=None, description="Working directory for the command")
    timeout: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1, description="Timeout in milliseconds")


def truncate(text: str, limit: int = MAX_OUTPUT_SIZE) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n\n[TRUNCATED: output is {len(text)} chars, showing first {limit}]"


def create_shell_tool(security_mode: str, workspace_dir: Optional[str] = None) -> BaseTool:
    """``execute_command``; limited-control mode pins the cwd to the workspace"""

    async def execute_command(command: str, cwd: Optional[str] = None, timeout: int = DEFAULT_TIMEOUT_MS) -> Dict[str, Any]:
        effective_cwd = cwd
        if security_mode == "limited-control":
            if not workspace_dir:
                raise PermissionError("Workspace directory must be configured in limited-control mode")
            effective_cwd = workspace_dir

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=effective_cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout / 1000)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command timed out", command=command, timeout_ms=timeout)
            return {
                "stdout": "",
                "stderr": f"Command timed out after {timeout} ms",
                "exit_code": None,
                "failed": True,
            }

        return {
            "stdout": truncate(stdout.decode("utf-8", errors="replace")),
            "stderr": truncate(stderr.decode("utf-8", errors="replace")),
            "exit_code": process.returncode,
            "failed": process.returncode != 0,
        }

    return StructuredTool.from_function(
        coroutine=execute_command,
        name="execute_command",
        description=(
            "Execute a shell command and return its output. Use for running build commands, "
            "git operations, or other CLI tools."
        ),
        args_schema=ExecuteCommandInput,
    )
