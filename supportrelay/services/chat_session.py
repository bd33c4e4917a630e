from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from supportrelay.services.state_machine import ChatMode

EXTERNAL_CHAT_PREFIX = "tg_"


class OriginChannel(str, Enum):
    WEB = "web"
    EXTERNAL = "telegram"


class Sender(str, Enum):
    USER = "user"
    AGENT = "agent"
    BOT = "bot"
    SYSTEM = "system"


class AgentChannel(str, Enum):
    TELEGRAM = "telegram"
    DASHBOARD = "dashboard"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def external_chat_id(telegram_user_id: int | str) -> str:
    """Chat id for a customer-bot user. One session per Telegram user."""
    return f"{EXTERNAL_CHAT_PREFIX}{telegram_user_id}"


def is_reserved_chat_id(chat_id: str) -> bool:
    return chat_id.startswith(EXTERNAL_CHAT_PREFIX)


@dataclass(frozen=True)
class AgentRef:
    agent_id: str
    name: str
    channel: AgentChannel = AgentChannel.TELEGRAM

    def to_dict(self) -> dict[str, Any]:
        return {"agent_id": self.agent_id, "agent_name": self.name, "channel": self.channel.value}


@dataclass(frozen=True)
class Participant:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Anonymous"

    def merged_with(self, other: Optional["Participant"]) -> "Participant":
        """Fields present on `other` win; missing ones are kept."""
        if other is None:
            return self
        return Participant(
            first_name=other.first_name or self.first_name,
            last_name=other.last_name or self.last_name,
            user_id=other.user_id or self.user_id,
        )


@dataclass(frozen=True)
class Attachment:
    url: str
    name: str
    mime_type: str = "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def to_dict(self) -> dict[str, Any]:
        return {"file_url": self.url, "file_name": self.name, "file_type": self.mime_type}


@dataclass(frozen=True)
class ChatMessage:
    sender: Sender
    body: str
    timestamp: datetime = field(default_factory=utcnow)
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    attachment: Optional[Attachment] = None

    def __post_init__(self):
        if self.sender == Sender.AGENT and not self.agent_id:
            raise ValueError("Agent messages require agent_id")
        if self.sender != Sender.AGENT and (self.agent_id or self.agent_name):
            raise ValueError(f"{self.sender.value} messages cannot carry an agent identity")

    @classmethod
    def from_agent(cls, agent: AgentRef, body: str, attachment: Optional[Attachment] = None) -> "ChatMessage":
        return cls(
            sender=Sender.AGENT,
            body=body,
            agent_id=agent.agent_id,
            agent_name=agent.name,
            attachment=attachment,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "from": self.sender.value,
            "text": self.body,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.sender == Sender.AGENT:
            data["agent_id"] = self.agent_id
            data["agent_name"] = self.agent_name
        if self.attachment:
            data.update(self.attachment.to_dict())
        return data


@dataclass
class ChatSession:
    chat_id: str
    origin: OriginChannel
    mode: ChatMode = ChatMode.BOT
    assigned_agent: Optional[AgentRef] = None
    participant: Optional[Participant] = None
    # Telegram user id for EXTERNAL sessions; web sessions are addressed by chat id.
    address: Optional[str] = None
    messages: list[ChatMessage] = field(default_factory=list)
    escalation_requested: bool = False
    visited: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.participant.display_name if self.participant else "Anonymous"

    def append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        self.last_activity_at = message.timestamp
        return message

    def summary(self) -> dict[str, Any]:
        """Session fields without the message log."""
        participant = self.participant or Participant()
        return {
            "chat_id": self.chat_id,
            "mode": self.mode.value,
            "source": self.origin.value,
            "agent_id": self.assigned_agent.agent_id if self.assigned_agent else None,
            "agent_name": self.assigned_agent.name if self.assigned_agent else None,
            "requesting_human": self.escalation_requested,
            "visited": self.visited,
            "user_first_name": participant.first_name,
            "user_last_name": participant.last_name,
            "user_id": participant.user_id,
            "message_count": len(self.messages),
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.summary()
        data["messages"] = [message.to_dict() for message in self.messages]
        return data
