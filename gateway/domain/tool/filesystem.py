"""File tools honouring the gateway security mode.

In ``limited-control`` mode every path must resolve inside the configured
workspace; relative paths are taken relative to it.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

MAX_READ_SIZE = 100 * 1024


class ReadFileInput(BaseModel):
    path: str = Field(description="Absolute or relative file path to read")


class WriteFileInput(BaseModel):
    path: str = Field(description="Absolute or relative file path to write")
    content: str = Field(description="Content to write to the file")


class ListFilesInput(BaseModel):
    directory: str = Field(description="Directory path to list")
    recursive: bool = Field(default=False, description="If true, list files recursively")


def resolve_path(path: str, security_mode: str, workspace_dir: Optional[str]) -> Path:
    """Resolve ``path`` and enforce the workspace boundary; raises PermissionError"""
    candidate = Path(path).expanduser()
    if security_mode != "limited-control":
        return candidate

    if not workspace_dir:
        raise PermissionError("Workspace directory must be configured in limited-control mode")
    workspace = Path(workspace_dir).expanduser().resolve()
    if not candidate.is_absolute():
        candidate = workspace / candidate
    resolved = candidate.resolve()
    if resolved != workspace and workspace not in resolved.parents:
        raise PermissionError(f"Path '{path}' is outside the allowed workspace '{workspace}'")
    return resolved


def _read(path: Path) -> str:
    content = path.read_text(encoding="utf-8")
    if len(content) > MAX_READ_SIZE:
        return (
            content[:MAX_READ_SIZE]
            + f"\n\n[TRUNCATED: file is {len(content)} bytes, showing first {MAX_READ_SIZE} bytes]"
        )
    return content


def _write(path: Path, content: str) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return f"Wrote {len(content.encode('utf-8'))} bytes to {path}"


def _list(directory: Path, recursive: bool) -> str:
    entries = sorted(directory.rglob("*") if recursive else directory.iterdir())
    lines: List[str] = []
    for entry in entries:
        name = str(entry.relative_to(directory)) if recursive else entry.name
        lines.append(f"{'d' if entry.is_dir() else 'f'} {name}")
    return "\n".join(lines)


def create_filesystem_tools(security_mode: str, workspace_dir: Optional[str] = None) -> Dict[str, BaseTool]:
    async def read_file(path: str) -> str:
        target = resolve_path(path, security_mode, workspace_dir)
        return await asyncio.to_thread(_read, target)

    async def write_file(path: str, content: str) -> str:
        target = resolve_path(path, security_mode, workspace_dir)
        return await asyncio.to_thread(_write, target, content)

    async def list_files(directory: str, recursive: bool = False) -> str:
        target = resolve_path(directory, security_mode, workspace_dir)
        return await asyncio.to_thread(_list, target, recursive)

    return {
        "read_file": StructuredTool.from_function(
            coroutine=read_file,
            name="read_file",
            description="Read the contents of a file at the given path. Returns the file content as a UTF-8 string.",
            args_schema=ReadFileInput,
        ),
        "write_file": StructuredTool.from_function(
            coroutine=write_file,
            name="write_file",
            description="Write content to a file at the given path. Creates the file if it does not exist, overwrites if it does.",
            args_schema=WriteFileInput,
        ),
        "list_files": StructuredTool.from_function(
            coroutine=list_files,
            name="list_files",
            description="List files and directories at the given path. Optionally list recursively.",
            args_schema=ListFilesInput,
        ),
    }
