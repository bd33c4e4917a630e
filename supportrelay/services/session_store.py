"""
Durable mirror of chat sessions.

The relay works memory-only with NullSessionStore; SqlSessionStore mirrors
sessions and messages into SQL tables and reloads them at startup.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import sessionmaker

from supportrelay.logging_config import get_logger
from supportrelay.models import ChatMessageRecord, ChatSessionRecord
from supportrelay.services.chat_session import (
    AgentChannel,
    AgentRef,
    Attachment,
    ChatMessage,
    ChatSession,
    OriginChannel,
    Participant,
    Sender,
)
from supportrelay.services.state_machine import ChatMode

logger = get_logger("session_store")


class SessionStore(ABC):
    """Persistence collaborator of the chat router."""

    @abstractmethod
    def upsert_session(self, session: ChatSession) -> None:
        """Insert or update the session row (without messages)."""

    @abstractmethod
    def append_message(self, chat_id: str, message: ChatMessage) -> None:
        """Append one message to the session's history."""

    @abstractmethod
    def load_sessions(self) -> list[ChatSession]:
        """Return every stored session with its messages."""


class NullSessionStore(SessionStore):
    """Memory-only mode."""

    def upsert_session(self, session: ChatSession) -> None:
        return None

    def append_message(self, chat_id: str, message: ChatMessage) -> None:
        return None

    def load_sessions(self) -> list[ChatSession]:
        return []


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlSessionStore(SessionStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def upsert_session(self, session: ChatSession) -> None:
        participant = session.participant or Participant()
        agent = session.assigned_agent
        db = self.session_factory()
        try:
            record = db.get(ChatSessionRecord, session.chat_id)
            if record is None:
                record = ChatSessionRecord(id=session.chat_id, created_at=session.created_at)
                db.add(record)
            record.source = session.origin.value
            record.mode = session.mode.value
            record.agent_id = agent.agent_id if agent else None
            record.agent_name = agent.name if agent else None
            record.agent_channel = agent.channel.value if agent else None
            record.user_first_name = participant.first_name
            record.user_last_name = participant.last_name
            record.user_id = participant.user_id
            record.address = session.address
            record.requesting_human = session.escalation_requested
            record.visited = session.visited
            record.last_activity_at = session.last_activity_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def append_message(self, chat_id: str, message: ChatMessage) -> None:
        db = self.session_factory()
        try:
            db.add(
                ChatMessageRecord(
                    chat_id=chat_id,
                    sender=message.sender.value,
                    body=message.body,
                    agent_id=message.agent_id,
                    agent_name=message.agent_name,
                    attachment=message.attachment.to_dict() if message.attachment else None,
                    created_at=message.timestamp,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load_sessions(self) -> list[ChatSession]:
        db = self.session_factory()
        try:
            records = db.query(ChatSessionRecord).all()
            sessions = [self._to_session(record) for record in records]
        finally:
            db.close()
        logger.info(f"Loaded {len(sessions)} sessions from store")
        return sessions

    @staticmethod
    def _to_message(record: ChatMessageRecord) -> ChatMessage:
        attachment = None
        if record.attachment:
            attachment = Attachment(
                url=record.attachment.get("file_url", ""),
                name=record.attachment.get("file_name", "attachment"),
                mime_type=record.attachment.get("file_type") or "application/octet-stream",
            )
        return ChatMessage(
            sender=Sender(record.sender),
            body=record.body or "",
            timestamp=_aware(record.created_at),
            agent_id=record.agent_id,
            agent_name=record.agent_name,
            attachment=attachment,
        )

    def _to_session(self, record: ChatSessionRecord) -> ChatSession:
        agent = None
        mode = ChatMode(record.mode)
        if mode == ChatMode.HUMAN and record.agent_id:
            agent = AgentRef(
                agent_id=record.agent_id,
                name=record.agent_name or "Agent",
                channel=AgentChannel(record.agent_channel or AgentChannel.TELEGRAM.value),
            )
        elif mode == ChatMode.HUMAN:
            # Human row without its agent; the bot takes the chat back.
            mode = ChatMode.BOT

        participant = None
        if record.user_first_name or record.user_last_name or record.user_id:
            participant = Participant(
                first_name=record.user_first_name,
                last_name=record.user_last_name,
                user_id=record.user_id,
            )

        return ChatSession(
            chat_id=record.id,
            origin=OriginChannel(record.source),
            mode=mode,
            assigned_agent=agent,
            participant=participant,
            address=record.address,
            messages=[self._to_message(message) for message in record.messages],
            escalation_requested=bool(record.requesting_human),
            visited=bool(record.visited),
            created_at=_aware(record.created_at),
            last_activity_at=_aware(record.last_activity_at),
        )
