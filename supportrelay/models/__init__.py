from supportrelay.models.chat_message import ChatMessageRecord
from supportrelay.models.chat_session import ChatSessionRecord

__all__ = [
    "ChatSessionRecord",
    "ChatMessageRecord",
]
