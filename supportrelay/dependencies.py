from fastapi import Request, WebSocket

from supportrelay.services.chat_router import ChatRouter
from supportrelay.services.socket_manager import ConnectionManager
from supportrelay.services.telegram_service import TelegramService


def get_chat_router(request: Request) -> ChatRouter:
    return request.app.state.chat_router


def get_customer_bot(request: Request) -> TelegramService:
    return request.app.state.customer_bot


def get_support_bot(request: Request) -> TelegramService:
    return request.app.state.support_bot


def get_socket_chat_router(websocket: WebSocket) -> ChatRouter:
    return websocket.app.state.chat_router


def get_connections(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connections
