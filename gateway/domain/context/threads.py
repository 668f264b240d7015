from typing import List, Optional
import uuid
import structlog

from gateway.domain.errors import ThreadNotFoundError
from gateway.domain.models.session import utcnow
from gateway.domain.models.thread import GlobalPrompt, Thread
from gateway.infrastructure.persistence.repository import PromptRepository, ThreadRepository

logger = structlog.get_logger(__name__)


class ThreadManager:
    """Conversation threads and the global prompts shared by every turn"""

    def __init__(self, threads: ThreadRepository, prompts: PromptRepository):
        self.threads = threads
        self.prompts = prompts

    async def create_thread(self, title: str, system_prompt: Optional[str] = None) -> Thread:
        thread = Thread(id=uuid.uuid4().hex, title=title, system_prompt=system_prompt)
        await self.threads.save(thread)
        logger.info("Thread created", thread_id=thread.id)
        return thread

    async def get_thread(self, thread_id: str) -> Optional[Thread]:
        return await self.threads.get(thread_id)

    async def list_threads(self, include_archived: bool = False) -> List[Thread]:
        return await self.threads.list(include_archived)

    async def update_thread(
        self,
        thread_id: str,
        title: Optional[str] = None,
        system_prompt: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> Thread:
        """Apply the given fields; omitted ones keep their value"""
        thread = await self.threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        if title is not None:
            thread.title = title
        if system_prompt is not None:
            thread.system_prompt = system_prompt
        if archived is not None:
            thread.archived = archived
        thread.last_active_at = utcnow()
        await self.threads.save(thread)
        logger.info("Thread updated", thread_id=thread_id)
        return thread

    async def add_global_prompt(self, name: str, content: str, priority: int = 0) -> GlobalPrompt:
        prompt = await self.prompts.add(name, content, priority)
        logger.info("Global prompt added", prompt_id=prompt.id, priority=priority)
        return prompt

    async def list_global_prompts(self) -> List[GlobalPrompt]:
        return await self.prompts.list()

    async def build_system_prompt(self, thread_id: Optional[str] = None) -> str:
        """Active global prompts, highest priority first, then the thread's own prompt.

        Returns an empty string when neither contributes anything.
        """
        parts = [prompt.content for prompt in await self.prompts.list(active_only=True)]
        if thread_id:
            thread = await self.threads.get(thread_id)
            if thread is not None and thread.system_prompt:
                parts.append(thread.system_prompt)
        return "\n\n".join(parts)
