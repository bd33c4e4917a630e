from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, status

from supportrelay.dependencies import get_chat_router
from supportrelay.schemas.events import (
    ActionResponse,
    ReleaseRequest,
    SendMessageRequest,
    SessionRequest,
    TakeoverRequest,
)
from supportrelay.services.chat_router import ChatRouter
from supportrelay.services.chat_session import OriginChannel, Participant, is_reserved_chat_id
from supportrelay.services.result import (
    ALREADY_ASSIGNED,
    CHANNEL_MISMATCH,
    INVALID_STATE,
    MALFORMED,
    NOT_ASSIGNED,
    UNKNOWN_SESSION,
    Result,
)

router = APIRouter()

ERROR_STATUS = {
    UNKNOWN_SESSION: status.HTTP_404_NOT_FOUND,
    ALREADY_ASSIGNED: status.HTTP_409_CONFLICT,
    NOT_ASSIGNED: status.HTTP_409_CONFLICT,
    INVALID_STATE: status.HTTP_409_CONFLICT,
    MALFORMED: status.HTTP_400_BAD_REQUEST,
    CHANNEL_MISMATCH: status.HTTP_400_BAD_REQUEST,
}


def raise_for_failure(result: Result) -> None:
    if not result.ok:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
            detail=result.error,
        )


@router.post("/send", response_model=ActionResponse)
async def send_message(request: SendMessageRequest, chat_router: ChatRouter = Depends(get_chat_router)):
    """Dashboard agent reply. Only the agent owning the chat may send."""
    attachment = request.to_attachment()
    if not request.text and attachment is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message text or file is required")

    result = await chat_router.handle_agent_message(request.agent(), request.text, attachment, chat_id=request.chat_id)
    raise_for_failure(result)
    return ActionResponse(success=True, chat_id=request.chat_id, mode=result.value.mode.value, message="Message sent")


@router.post("/takeover", response_model=ActionResponse)
async def take_over(request: TakeoverRequest, chat_router: ChatRouter = Depends(get_chat_router)):
    result = await chat_router.take_over(request.chat_id, request.agent())
    raise_for_failure(result)
    session = result.value
    return ActionResponse(
        success=True,
        chat_id=session.chat_id,
        mode=session.mode.value,
        agent_id=session.assigned_agent.agent_id,
        message=f"{session.assigned_agent.name} took the chat",
    )


@router.post("/release", response_model=ActionResponse)
async def release(request: ReleaseRequest, chat_router: ChatRouter = Depends(get_chat_router)):
    result = await chat_router.release(request.chat_id, request.agent())
    raise_for_failure(result)
    return ActionResponse(
        success=True, chat_id=request.chat_id, mode=result.value.mode.value, message="Chat returned to bot"
    )


@router.post("/api/chat/session")
async def get_or_create_session(request: SessionRequest, chat_router: ChatRouter = Depends(get_chat_router)):
    """Get or create a web chat session; a new id is issued when none is given."""
    chat_id = request.chat_id or f"web_{uuid4().hex}"
    if is_reserved_chat_id(chat_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Chat id {chat_id} is reserved")

    result = await chat_router.update_participant(
        chat_id, request.to_participant() or Participant(), origin=OriginChannel.WEB
    )
    raise_for_failure(result)
    return result.value.to_dict()


@router.get("/api/chat/history/{chat_id}")
async def get_history(
    chat_id: str,
    limit: Optional[int] = Query(None, ge=1),
    chat_router: ChatRouter = Depends(get_chat_router),
):
    session = chat_router.get_session(chat_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Chat {chat_id} not found")

    messages = session.messages[-limit:] if limit else session.messages
    return {
        "chat_id": chat_id,
        "mode": session.mode.value,
        "messages": [message.to_dict() for message in messages],
    }


@router.get("/api/chat/sessions")
async def list_sessions(
    limit: Optional[int] = Query(None, ge=1),
    chat_router: ChatRouter = Depends(get_chat_router),
):
    return [session.summary() for session in chat_router.list_sessions(limit)]


@router.get("/api/chat/sessions/{user_id}")
async def list_user_sessions(user_id: str, chat_router: ChatRouter = Depends(get_chat_router)):
    return [session.summary() for session in chat_router.sessions_for_user(user_id)]
