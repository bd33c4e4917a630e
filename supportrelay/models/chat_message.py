from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from supportrelay.database import Base


class ChatMessageRecord(Base):
    __tablename__ = "relay_chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Text, ForeignKey("relay_chat_sessions.id"), nullable=False, index=True)
    sender = Column(Text, nullable=False)  # user, agent, bot, system
    body = Column(Text, nullable=False, default="")
    agent_id = Column(Text)
    agent_name = Column(Text)
    attachment = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("ChatSessionRecord", back_populates="messages")
