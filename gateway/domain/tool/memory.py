"""Memory tools. They write through the MemoryManager and are not subject to
workspace restrictions."""

import asyncio
from typing import Dict, Literal

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from gateway.domain.memory.memory_manager import MemoryManager


class MemoryReadInput(BaseModel):
    file: Literal["soul", "long_term", "daily"] = Field(
        description="soul (your personality), long_term (MEMORY.md) or daily (recent daily logs)"
    )


class MemoryWriteInput(BaseModel):
    target: Literal["memory", "daily"] = Field(
        description="'memory' adds a fact to MEMORY.md, 'daily' appends to today's log"
    )
    content: str = Field(min_length=1, description="The content to write")


def create_memory_tools(memory_manager: MemoryManager) -> Dict[str, BaseTool]:
    async def memory_read(file: str) -> str:
        content = await asyncio.to_thread(memory_manager.read, file)
        return content or "(empty)"

    async def memory_write(target: str, content: str) -> str:
        if target == "memory":
            await asyncio.to_thread(memory_manager.append_long_term, content)
            return "Added entry to MEMORY.md"
        await asyncio.to_thread(memory_manager.append_daily_log, content)
        return "Appended to today's daily log"

    return {
        "memory_read": StructuredTool.from_function(
            coroutine=memory_read,
            name="memory_read",
            description="Read one of your identity or memory files.",
            args_schema=MemoryReadInput,
        ),
        "memory_write": StructuredTool.from_function(
            coroutine=memory_write,
            name="memory_write",
            description="Write to your long-term memory or today's daily log.",
            args_schema=MemoryWriteInput,
        ),
    }
