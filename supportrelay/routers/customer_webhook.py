from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from supportrelay.dependencies import get_chat_router, get_customer_bot
from supportrelay.logging_config import get_logger
from supportrelay.routers.telegram_updates import parse_telegram_update, resolve_attachment
from supportrelay.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from supportrelay.services.chat_router import ChatRouter, InboundMessage
from supportrelay.services.chat_session import OriginChannel, Participant, external_chat_id
from supportrelay.services.telegram_service import TelegramService

logger = get_logger("customer_webhook")

router = APIRouter()


@router.post("/webhook/customer", response_model=TelegramWebhookResponse)
async def handle_customer_webhook(
    request: Request,
    chat_router: ChatRouter = Depends(get_chat_router),
    customer_bot: TelegramService = Depends(get_customer_bot),
):
    """
    Handle updates of the customer bot. Always answers 200 so Telegram
    does not redeliver; unusable updates are acknowledged and dropped.
    """
    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    try:
        update = TelegramUpdate(**body)
    except ValidationError as e:
        logger.warning(f"Malformed customer update: {e.error_count()} errors")
        return TelegramWebhookResponse(success=False, message="Malformed update")

    message = update.message
    if message is None or message.from_user is None:
        return TelegramWebhookResponse(success=True, message="No actionable content")

    user = message.from_user
    if user.is_bot:
        return TelegramWebhookResponse(success=True, message="Ignoring bot message")

    attachment = await resolve_attachment(customer_bot, message)
    if not message.content and attachment is None:
        return TelegramWebhookResponse(success=True, message="No actionable content")

    inbound = InboundMessage(
        chat_id=external_chat_id(user.id),
        text=message.content,
        origin=OriginChannel.EXTERNAL,
        participant=Participant(first_name=user.first_name, last_name=user.last_name, user_id=str(user.id)),
        address=str(message.chat.id),
        attachment=attachment,
    )

    try:
        result = await chat_router.handle_user_message(inbound)
    except Exception as e:
        logger.error(f"Customer webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(success=False, message=str(e), chat_id=inbound.chat_id)

    if not result.ok:
        return TelegramWebhookResponse(success=False, message=result.error, chat_id=inbound.chat_id)

    return TelegramWebhookResponse(success=True, message=result.value.action.value, chat_id=inbound.chat_id)
