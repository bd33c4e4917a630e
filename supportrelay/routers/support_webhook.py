from html import escape
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from supportrelay.dependencies import get_chat_router, get_support_bot
from supportrelay.logging_config import get_logger
from supportrelay.routers.telegram_updates import parse_telegram_update, resolve_attachment
from supportrelay.schemas.telegram import TelegramCallbackQuery, TelegramUpdate, TelegramUser, TelegramWebhookResponse
from supportrelay.services.chat_router import ChatRouter
from supportrelay.services.chat_session import AgentChannel, AgentRef
from supportrelay.services.result import ALREADY_ASSIGNED, NOT_ASSIGNED, UNKNOWN_SESSION
from supportrelay.services.telegram_service import (
    TelegramService,
    build_open_chat_button,
    format_history_entry,
    format_session_entry,
    format_session_header,
    parse_open_callback,
)

logger = get_logger("support_webhook")

router = APIRouter()

MSG_HELP = (
    "Commands:\n"
    "/list - show active chats\n"
    "/open &lt;chat_id&gt; - take over a chat\n"
    "/release - return the open chat to the bot"
)
MSG_NO_CHATS = "No active chats."
MSG_NO_OPEN_CHAT = "ℹ️ No chat opened. Use /list and /open &lt;chat_id&gt; first."
MSG_REPLY_HINT = "💬 Reply here to answer the user. /release returns the chat to the bot."


def agent_from_user(user: TelegramUser) -> AgentRef:
    return AgentRef(agent_id=str(user.id), name=user.full_name, channel=AgentChannel.TELEGRAM)


def parse_command(text: str) -> tuple[str, Optional[str]]:
    """'/open@SupportBot web_1' -> ('/open', 'web_1')."""
    parts = text.strip().split(maxsplit=1)
    command = parts[0].split("@", 1)[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else None
    return command, argument or None


async def reply(support_bot: TelegramService, agent: AgentRef, text: str, reply_markup: Optional[dict] = None) -> bool:
    result = await support_bot.send_message(agent.agent_id, text, reply_markup=reply_markup)
    if not result.ok:
        logger.warning(
            f"Reply to agent {agent.agent_id} failed: {result.error}",
            extra={"context": {"agent_id": agent.agent_id, "error_code": result.error_code}},
        )
    return result.ok


@router.post("/webhook/support", response_model=TelegramWebhookResponse)
async def handle_support_webhook(
    request: Request,
    chat_router: ChatRouter = Depends(get_chat_router),
    support_bot: TelegramService = Depends(get_support_bot),
):
    """
    Handle updates of the support bot:
    - commands (/start, /list, /open, /release)
    - "Open chat" button clicks
    - text and files from agents -> relayed to the agent's open chat
    """
    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    try:
        update = TelegramUpdate(**body)
    except ValidationError as e:
        logger.warning(f"Malformed support update: {e.error_count()} errors")
        return TelegramWebhookResponse(success=False, message="Malformed update")

    try:
        if update.callback_query:
            return await handle_callback_query(update.callback_query, chat_router, support_bot)

        message = update.message
        if message is None or message.from_user is None or message.from_user.is_bot:
            return TelegramWebhookResponse(success=True, message="No actionable content")

        agent = agent_from_user(message.from_user)
        if message.text and message.text.startswith("/"):
            return await handle_command(message.text, agent, chat_router, support_bot)

        attachment = await resolve_attachment(support_bot, message)
        if not message.content and attachment is None:
            return TelegramWebhookResponse(success=True, message="No actionable content")

        return await handle_agent_reply(agent, message.content, attachment, chat_router, support_bot)

    except Exception as e:
        logger.error(f"Support webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(success=False, message=str(e))


async def handle_command(
    text: str, agent: AgentRef, chat_router: ChatRouter, support_bot: TelegramService
) -> TelegramWebhookResponse:
    command, argument = parse_command(text)
    logger.info(f"Agent {agent.agent_id} command {command}")

    if command == "/start":
        chat_router.register_agent(agent)
        await reply(
            support_bot,
            agent,
            f"👋 Welcome, {escape(agent.name)}! You are registered as a support agent.\n\n{MSG_HELP}",
        )
        return TelegramWebhookResponse(success=True, message="Agent registered")

    if command == "/list":
        sessions = chat_router.list_sessions()
        if not sessions:
            await reply(support_bot, agent, MSG_NO_CHATS)
            return TelegramWebhookResponse(success=True, message=MSG_NO_CHATS)

        await reply(support_bot, agent, f"📋 <b>Active chats ({len(sessions)})</b>")
        for session in sessions:
            await reply(
                support_bot, agent, format_session_entry(session), reply_markup=build_open_chat_button(session.chat_id)
            )
        return TelegramWebhookResponse(success=True, message=f"Listed {len(sessions)} chats")

    if command == "/open":
        if not argument:
            await reply(support_bot, agent, "Usage: /open &lt;chat_id&gt;")
            return TelegramWebhookResponse(success=True, message="Missing chat id")
        return await open_chat(argument, agent, chat_router, support_bot)

    if command == "/release":
        result = await chat_router.release_open_chat(agent)
        if not result.ok:
            text = MSG_NO_OPEN_CHAT if result.error_code == NOT_ASSIGNED else f"⚠️ {escape(result.error)}"
            await reply(support_bot, agent, text)
            return TelegramWebhookResponse(success=False, message=result.error)

        session = result.value
        await reply(support_bot, agent, f"🔓 Chat <code>{escape(session.chat_id)}</code> returned to the bot")
        return TelegramWebhookResponse(success=True, message="Chat released", chat_id=session.chat_id)

    await reply(support_bot, agent, MSG_HELP)
    return TelegramWebhookResponse(success=True, message="Unknown command")


async def handle_callback_query(
    callback: TelegramCallbackQuery, chat_router: ChatRouter, support_bot: TelegramService
) -> TelegramWebhookResponse:
    """Handle the "Open chat" button (callback_data open_<chat_id>)."""
    chat_id = parse_open_callback(callback.data)
    if chat_id is None:
        await support_bot.answer_callback_query(callback.id, "Unknown action")
        return TelegramWebhookResponse(success=False, message="Unknown callback action")

    await support_bot.answer_callback_query(callback.id)
    return await open_chat(chat_id, agent_from_user(callback.from_user), chat_router, support_bot)


async def open_chat(
    chat_id: str, agent: AgentRef, chat_router: ChatRouter, support_bot: TelegramService
) -> TelegramWebhookResponse:
    """Take over the chat and replay its recent history to the agent."""
    result = await chat_router.take_over(chat_id, agent)
    if not result.ok:
        if result.error_code == UNKNOWN_SESSION:
            text = f"❌ Chat <code>{escape(chat_id)}</code> not found"
        elif result.error_code == ALREADY_ASSIGNED:
            text = f"⛔ {escape(result.error)}"
        else:
            text = f"⚠️ {escape(result.error)}"
        await reply(support_bot, agent, text)
        return TelegramWebhookResponse(success=False, message=result.error, chat_id=chat_id)

    session = result.value
    await reply(support_bot, agent, format_session_header(session))

    history = chat_router.history(chat_id)
    if history:
        entries = "\n\n".join(format_history_entry(message) for message in history)
        await reply(support_bot, agent, f"📜 <b>Last {len(history)} messages</b>\n\n{entries}")
    else:
        await reply(support_bot, agent, "No messages yet.")

    await reply(support_bot, agent, MSG_REPLY_HINT)
    return TelegramWebhookResponse(success=True, message="Chat opened", chat_id=chat_id)


async def handle_agent_reply(
    agent: AgentRef, text: str, attachment, chat_router: ChatRouter, support_bot: TelegramService
) -> TelegramWebhookResponse:
    has_open_chat = chat_router.registry.open_chat_of(agent.agent_id) is not None
    result = await chat_router.handle_agent_message(agent, text, attachment)
    if not result.ok:
        if result.error_code == NOT_ASSIGNED and not has_open_chat:
            await reply(support_bot, agent, MSG_NO_OPEN_CHAT)
        else:
            await reply(support_bot, agent, f"⚠️ {escape(result.error)}")
        return TelegramWebhookResponse(success=False, message=result.error)

    return TelegramWebhookResponse(success=True, message="Relayed to user", chat_id=result.value.chat_id)
