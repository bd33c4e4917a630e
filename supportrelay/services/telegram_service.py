from html import escape
from typing import Optional

import httpx

from supportrelay.logging_config import get_logger
from supportrelay.services.chat_session import ChatMessage, ChatSession, OriginChannel, Sender
from supportrelay.services.result import NOT_CONFIGURED, TELEGRAM_ERROR, Result

logger = get_logger("telegram_service")

OPEN_CALLBACK_PREFIX = "open_"


class TelegramService:
    """Async client for one Telegram bot."""

    def __init__(self, bot_token: str, api_base: str = "https://api.telegram.org", timeout: float = 30.0):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.base_url = f"{self.api_base}/bot{bot_token}"
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    async def _make_request(self, method: str, data: Optional[dict] = None) -> Result[dict]:
        """Make request to Telegram API."""
        if not self.configured:
            return Result.failure(f"Bot token missing for {method}", NOT_CONFIGURED)

        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=data or {})
                payload = response.json()
        except Exception as e:
            logger.error(f"Telegram API error on {method}: {e}")
            return Result.failure(str(e), TELEGRAM_ERROR)

        if not payload.get("ok"):
            description = payload.get("description") or f"HTTP {response.status_code}"
            return Result.failure(description, TELEGRAM_ERROR)
        return Result.success(payload.get("result"))

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
    ) -> Result[dict]:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup

        return await self._make_request("sendMessage", data)

    async def send_photo(
        self,
        chat_id: str,
        photo: str,
        caption: Optional[str] = None,
        parse_mode: str = "HTML",
    ) -> Result[dict]:
        """Send photo (by URL) to Telegram chat."""
        data = {"chat_id": chat_id, "photo": photo}
        if caption:
            data["caption"] = caption
            data["parse_mode"] = parse_mode
        return await self._make_request("sendPhoto", data)

    async def send_document(
        self,
        chat_id: str,
        document: str,
        caption: Optional[str] = None,
        parse_mode: str = "HTML",
    ) -> Result[dict]:
        """Send document (by URL) to Telegram chat."""
        data = {"chat_id": chat_id, "document": document}
        if caption:
            data["caption"] = caption
            data["parse_mode"] = parse_mode
        return await self._make_request("sendDocument", data)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> Result[dict]:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return await self._make_request("answerCallbackQuery", data)

    async def get_file_url(self, file_id: str) -> Result[str]:
        """Resolve a file_id into a downloadable URL."""
        result = await self._make_request("getFile", {"file_id": file_id})
        if not result.ok:
            return Result.failure(result.error, result.error_code)
        file_path = (result.value or {}).get("file_path")
        if not file_path:
            return Result.failure(f"No file_path for {file_id}", TELEGRAM_ERROR)
        return Result.success(f"{self.api_base}/file/bot{self.bot_token}/{file_path}")


def build_open_chat_button(chat_id: str) -> dict:
    """Inline keyboard with a single "Open chat" button."""
    return {"inline_keyboard": [[{"text": "📖 Open Chat", "callback_data": f"{OPEN_CALLBACK_PREFIX}{chat_id}"}]]}


def parse_open_callback(data: Optional[str]) -> Optional[str]:
    if not data or not data.startswith(OPEN_CALLBACK_PREFIX):
        return None
    return data[len(OPEN_CALLBACK_PREFIX) :] or None


def source_icon(origin: OriginChannel) -> str:
    return "🌐" if origin == OriginChannel.WEB else "📱"


def format_timestamp(value) -> str:
    return value.strftime("%b %d, %H:%M")


def format_agent_notification(session: ChatSession, message: str, kind: str) -> str:
    """Notification for registered agents. kind: new_chat, escalation."""
    titles = {
        "new_chat": "🔔 <b>NEW CHAT CREATED!</b>",
        "escalation": "🙋 <b>SUPPORT REQUESTED!</b>",
    }
    title = titles.get(kind, "💬 <b>New Message</b>")
    return (
        f"{title}\n\n"
        f"👤 User: {escape(session.display_name)}\n"
        f"{source_icon(session.origin)} Source: {session.origin.value}\n\n"
        f'Message: "{escape(message)}"\n\n'
        f"Click button to open chat"
    )


def format_session_entry(session: ChatSession) -> str:
    """One /list entry."""
    lines = []
    if session.escalation_requested:
        lines.append("🙋 <b>NEEDS HELP</b>")
    visited_flag = "✅" if session.visited else "🆕"
    mode_icon = "👤" if session.assigned_agent else "🤖"
    lines.append(
        f"{visited_flag} {mode_icon} <b>{escape(session.display_name)}</b> {source_icon(session.origin)}"
    )
    lines.append(f"   Created: {format_timestamp(session.created_at)}")
    lines.append(f"   Last activity: {format_timestamp(session.last_activity_at)}")
    lines.append(f"   Messages: {len(session.messages)}")
    if session.assigned_agent:
        lines.append(f"   Agent: {escape(session.assigned_agent.name)}")
    lines.append(f"   ID: <code>{escape(session.chat_id)}</code>")
    return "\n".join(lines)


def format_session_header(session: ChatSession) -> str:
    return (
        f"✅ Chat opened: <code>{escape(session.chat_id)}</code>\n\n"
        f"👤 User: {escape(session.display_name)}\n"
        f"{source_icon(session.origin)} Source: {session.origin.value}"
    )


def format_history_entry(message: ChatMessage) -> str:
    authors = {
        Sender.USER: "🧑 User",
        Sender.BOT: "🤖 Bot",
        Sender.SYSTEM: "⚙️ System",
    }
    author = authors.get(message.sender) or f"👨‍💼 {escape(message.agent_name or 'Agent')}"
    text = f"{author}:\n{escape(message.body)}"
    if message.attachment:
        text += f"\n📎 File: {escape(message.attachment.name)}"
    return text


def format_forwarded_user_message(session: ChatSession, text: str) -> str:
    return (
        f"💬 Message from <b>{escape(session.display_name)}</b> "
        f"(Chat: <code>{escape(session.chat_id)}</code>):\n\n{escape(text)}"
    )
