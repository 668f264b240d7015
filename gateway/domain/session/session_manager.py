from typing import List, Optional
import uuid
import structlog

from gateway.domain.errors import SessionNotFoundError
from gateway.domain.llm.tokens import estimate_tokens
from gateway.domain.models.session import Message, MessageRole, Session, SessionSummary
from gateway.infrastructure.persistence.repository import SessionRepository

logger = structlog.get_logger(__name__)


def build_session_key(agent_id: str, session_id: str) -> str:
    return f"agent:{agent_id}:{session_id}"


class SessionManager:
    """Creates sessions and appends messages through the session repository"""

    def __init__(self, repository: SessionRepository, default_model: str):
        self.repository = repository
        self.default_model = default_model

    async def create(self, agent_id: str = "default", model: Optional[str] = None) -> Session:
        session_id = str(uuid.uuid4())
        session = Session(
            id=session_id,
            session_key=build_session_key(agent_id, session_id),
            model=model or self.default_model,
        )
        await self.repository.create(session)
        logger.info("Session created", session_id=session_id, model=session.model)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        return await self.repository.get(session_id)

    async def require(self, session_id: str) -> Session:
        session = await self.repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def add_message(self, session_id: str, role: MessageRole, content: str) -> Message:
        message = Message(role=role, content=content, token_count=estimate_tokens(content))
        await self.repository.add_message(session_id, message)
        return message

    async def get_messages(self, session_id: str) -> List[Message]:
        session = await self.require(session_id)
        return session.messages

    async def update_model(self, session_id: str, model: str) -> None:
        await self.repository.update_model(session_id, model)
        logger.info("Session model switched", session_id=session_id, model=model)

    async def list(self) -> List[SessionSummary]:
        return await self.repository.list()
