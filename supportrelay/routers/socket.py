"""
WebSocket endpoints: the web chat widget and the live dashboard.
"""
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from supportrelay.dependencies import get_connections, get_socket_chat_router
from supportrelay.logging_config import get_logger
from supportrelay.schemas.events import (
    ReleaseRequest,
    SendMessageRequest,
    SocketEvent,
    TakeoverRequest,
    UserInfoPayload,
    UserMessagePayload,
)
from supportrelay.services import socket_manager
from supportrelay.services.chat_router import ChatRouter, InboundMessage
from supportrelay.services.chat_session import OriginChannel, Participant, is_reserved_chat_id
from supportrelay.services.result import MALFORMED, Result
from supportrelay.services.socket_manager import ConnectionManager

logger = get_logger("socket")

router = APIRouter()

USER_MESSAGE = "user_message"
USER_INFO = "user_info"
REQUEST_HUMAN = {"request_human", "request_human_support"}

SEND_MESSAGE = "send_message"
TAKEOVER = "takeover"
RELEASE = "release"


async def send_error(connections: ConnectionManager, websocket: WebSocket, error: str, code: str = MALFORMED) -> None:
    await connections.send(websocket, socket_manager.ERROR, {"message": error, "code": code})


async def send_if_failed(connections: ConnectionManager, websocket: WebSocket, result: Result) -> None:
    if not result.ok:
        await send_error(connections, websocket, result.error, result.error_code)


async def receive_event(connections: ConnectionManager, websocket: WebSocket) -> Optional[SocketEvent]:
    """Next event from the socket. Bad frames are answered with an error event and give None."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))

    raw = message.get("text")
    if raw is None:
        await send_error(connections, websocket, "Binary frames are not supported")
        return None

    try:
        return SocketEvent.model_validate_json(raw)
    except ValidationError as e:
        await send_error(connections, websocket, f"Invalid event: {e.error_count()} errors")
        return None


@router.websocket("/ws/chat/{chat_id}")
async def chat_socket(websocket: WebSocket, chat_id: str):
    """Socket of one web user. Receives the bot and agent messages of its chat."""
    if not chat_id or is_reserved_chat_id(chat_id):
        logger.warning(f"Rejected web socket for chat id {chat_id!r}")
        await websocket.close(code=4001, reason="Invalid chat id")
        return

    chat_router = get_socket_chat_router(websocket)
    connections = get_connections(websocket)
    await connections.connect_chat(websocket, chat_id)

    try:
        while True:
            event = await receive_event(connections, websocket)
            if event is None:
                continue
            try:
                await handle_chat_event(chat_id, event, chat_router, connections, websocket)
            except ValidationError as e:
                await send_error(connections, websocket, f"Invalid event: {e.error_count()} errors")
    except WebSocketDisconnect:
        logger.info(f"Web user left chat {chat_id}")
    finally:
        connections.disconnect(websocket)


async def handle_chat_event(
    chat_id: str,
    event: SocketEvent,
    chat_router: ChatRouter,
    connections: ConnectionManager,
    websocket: WebSocket,
) -> None:
    if event.event == USER_MESSAGE:
        payload = UserMessagePayload.model_validate(event.data)
        inbound = InboundMessage(
            chat_id=chat_id,
            text=payload.text.strip(),
            origin=OriginChannel.WEB,
            participant=payload.to_participant(),
            attachment=payload.to_attachment(),
        )
        await send_if_failed(connections, websocket, await chat_router.handle_user_message(inbound))

    elif event.event == USER_INFO:
        payload = UserInfoPayload.model_validate(event.data)
        result = await chat_router.update_participant(chat_id, payload.to_participant() or Participant())
        await send_if_failed(connections, websocket, result)

    elif event.event in REQUEST_HUMAN:
        result = await chat_router.request_escalation(chat_id, origin=OriginChannel.WEB)
        await send_if_failed(connections, websocket, result)

    else:
        await send_error(connections, websocket, f"Unknown event {event.event}")


@router.websocket("/ws/dashboard")
async def dashboard_socket(websocket: WebSocket):
    """Live dashboard. Gets a snapshot on connect, then every push event."""
    chat_router = get_socket_chat_router(websocket)
    connections = get_connections(websocket)
    await connections.connect_dashboard(websocket)
    await connections.send(websocket, socket_manager.ACTIVE_CHATS_SNAPSHOT, chat_router.snapshot())

    try:
        while True:
            event = await receive_event(connections, websocket)
            if event is None:
                continue
            try:
                await handle_dashboard_event(event, chat_router, connections, websocket)
            except ValidationError as e:
                await send_error(connections, websocket, f"Invalid event: {e.error_count()} errors")
    except WebSocketDisconnect:
        logger.info("Dashboard disconnected")
    finally:
        connections.disconnect(websocket)


async def handle_dashboard_event(
    event: SocketEvent,
    chat_router: ChatRouter,
    connections: ConnectionManager,
    websocket: WebSocket,
) -> None:
    if event.event == SEND_MESSAGE:
        request = SendMessageRequest.model_validate(event.data)
        attachment = request.to_attachment()
        if not request.text and attachment is None:
            await send_error(connections, websocket, "Message text or file is required")
            return
        result = await chat_router.handle_agent_message(
            request.agent(), request.text, attachment, chat_id=request.chat_id
        )
        await send_if_failed(connections, websocket, result)

    elif event.event == TAKEOVER:
        request = TakeoverRequest.model_validate(event.data)
        await send_if_failed(connections, websocket, await chat_router.take_over(request.chat_id, request.agent()))

    elif event.event == RELEASE:
        request = ReleaseRequest.model_validate(event.data)
        await send_if_failed(connections, websocket, await chat_router.release(request.chat_id, request.agent()))

    else:
        await send_error(connections, websocket, f"Unknown event {event.event}")
