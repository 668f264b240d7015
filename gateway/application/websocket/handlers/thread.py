"""Thread, global prompt and memory search handlers."""

import asyncio

from gateway.application.services import GatewayServices
from ..connection_state import ConnectionState
from ..schema.events import (
    MemorySearchResultEvent,
    PromptListResult,
    PromptSetResult,
    ThreadCreated,
    ThreadListResult,
    ThreadUpdated,
)
from ..schema.messages import MemorySearch, PromptList, PromptSet, ThreadCreate, ThreadList, ThreadUpdate
from ..transport import Transport


async def handle_thread_create(
    services: GatewayServices,
    transport: Transport,
    msg: ThreadCreate,
    conn: ConnectionState,
) -> None:
    thread = await services.threads.create_thread(msg.title, msg.system_prompt)
    await transport.send(ThreadCreated(request_id=msg.id, thread=thread))


async def handle_thread_list(
    services: GatewayServices,
    transport: Transport,
    msg: ThreadList,
    conn: ConnectionState,
) -> None:
    threads = await services.threads.list_threads(msg.include_archived)
    await transport.send(ThreadListResult(request_id=msg.id, threads=threads))


async def handle_thread_update(
    services: GatewayServices,
    transport: Transport,
    msg: ThreadUpdate,
    conn: ConnectionState,
) -> None:
    thread = await services.threads.update_thread(
        msg.thread_id,
        title=msg.title,
        system_prompt=msg.system_prompt,
        archived=msg.archived,
    )
    await transport.send(ThreadUpdated(request_id=msg.id, thread=thread))


async def handle_prompt_set(
    services: GatewayServices,
    transport: Transport,
    msg: PromptSet,
    conn: ConnectionState,
) -> None:
    """Add an active global prompt; it applies from the next turn on"""
    prompt = await services.threads.add_global_prompt(msg.name, msg.content, msg.priority)
    await transport.send(PromptSetResult(request_id=msg.id, prompt_id=prompt.id))


async def handle_prompt_list(
    services: GatewayServices,
    transport: Transport,
    msg: PromptList,
    conn: ConnectionState,
) -> None:
    prompts = await services.threads.list_global_prompts()
    await transport.send(PromptListResult(request_id=msg.id, prompts=prompts))


async def handle_memory_search(
    services: GatewayServices,
    transport: Transport,
    msg: MemorySearch,
    conn: ConnectionState,
) -> None:
    results = await asyncio.to_thread(services.memory.search, msg.query, msg.top_k)
    await transport.send(MemorySearchResultEvent(request_id=msg.id, results=results))
