from sqlalchemy import Boolean, Column, DateTime, Text
from sqlalchemy.orm import relationship

from supportrelay.database import Base


class ChatSessionRecord(Base):
    __tablename__ = "relay_chat_sessions"

    id = Column(Text, primary_key=True)
    source = Column(Text, nullable=False)  # web, telegram
    mode = Column(Text, nullable=False, default="bot")  # bot, human
    agent_id = Column(Text)
    agent_name = Column(Text)
    agent_channel = Column(Text)  # telegram, dashboard
    user_first_name = Column(Text)
    user_last_name = Column(Text)
    user_id = Column(Text)
    address = Column(Text)
    requesting_human = Column(Boolean, nullable=False, default=False)
    visited = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=False)

    messages = relationship(
        "ChatMessageRecord",
        back_populates="session",
        order_by="ChatMessageRecord.id",
    )
