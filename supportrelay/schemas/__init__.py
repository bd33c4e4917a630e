from supportrelay.schemas.events import (
    ActionResponse,
    ReleaseRequest,
    SendMessageRequest,
    SessionRequest,
    SocketEvent,
    TakeoverRequest,
    UserInfoPayload,
    UserMessagePayload,
)
from supportrelay.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

__all__ = [
    "ActionResponse",
    "ReleaseRequest",
    "SendMessageRequest",
    "SessionRequest",
    "SocketEvent",
    "TakeoverRequest",
    "UserInfoPayload",
    "UserMessagePayload",
    "TelegramUpdate",
    "TelegramWebhookResponse",
]
