"""Outbound delivery: best-effort, no retries.

Every send returns a Result. Callers log failures and carry on; the chat
state has already been committed when a send happens.
"""

from html import escape
from typing import Optional

from supportrelay.logging_config import get_logger
from supportrelay.services import socket_manager
from supportrelay.services.chat_session import (
    AgentChannel,
    AgentRef,
    Attachment,
    ChatMessage,
    OriginChannel,
)
from supportrelay.services.result import DELIVERY_ERROR, NO_CONNECTION, Result
from supportrelay.services.socket_manager import ConnectionManager
from supportrelay.services.telegram_service import TelegramService

logger = get_logger("delivery_service")


async def send_with_attachment(
    telegram: TelegramService,
    address: str,
    text: str,
    attachment: Optional[Attachment] = None,
    reply_markup: Optional[dict] = None,
) -> Result[dict]:
    if attachment is None:
        return await telegram.send_message(address, text, reply_markup=reply_markup)
    if attachment.is_image:
        return await telegram.send_photo(address, attachment.url, caption=text or None)
    return await telegram.send_document(address, attachment.url, caption=text or None)


class DeliveryService:
    def __init__(
        self,
        customer_bot: TelegramService,
        support_bot: TelegramService,
        connections: ConnectionManager,
    ):
        self.customer_bot = customer_bot
        self.support_bot = support_bot
        self.connections = connections

    async def to_user(
        self,
        chat_id: str,
        origin: OriginChannel,
        address: Optional[str],
        message: ChatMessage,
    ) -> Result[None]:
        """Deliver a bot or agent message to the user's origin channel."""
        if origin == OriginChannel.EXTERNAL:
            if not address:
                return Result.failure(f"No Telegram address for chat {chat_id}", DELIVERY_ERROR)
            result = await send_with_attachment(
                self.customer_bot, address, escape(message.body), message.attachment
            )
            if not result.ok:
                return Result.failure(result.error, result.error_code)
            return Result.success(None)

        delivered = await self.connections.send_to_chat(
            chat_id, socket_manager.MESSAGE_APPENDED, {"chat_id": chat_id, "message": message.to_dict()}
        )
        if not delivered:
            return Result.failure(f"No open web connection for chat {chat_id}", NO_CONNECTION)
        return Result.success(None)

    async def to_agent(
        self,
        agent: AgentRef,
        text: str,
        attachment: Optional[Attachment] = None,
        reply_markup: Optional[dict] = None,
    ) -> Result[None]:
        """Deliver to an agent's channel.

        Dashboard agents read the message_appended feed, which every appended
        message is already pushed to, so only reachability is checked here.
        """
        if agent.channel == AgentChannel.DASHBOARD:
            if not self.connections.dashboards:
                return Result.failure("No dashboard connected", NO_CONNECTION)
            return Result.success(None)

        result = await send_with_attachment(self.support_bot, agent.agent_id, text, attachment, reply_markup)
        if not result.ok:
            return Result.failure(result.error, result.error_code)
        return Result.success(None)

    async def notify_agents(self, agents: list[AgentRef], text: str, reply_markup: Optional[dict] = None) -> int:
        """Send the same notification to every agent. Returns the success count."""
        sent = 0
        for agent in agents:
            result = await self.to_agent(agent, text, reply_markup=reply_markup)
            if result.ok:
                sent += 1
            else:
                logger.warning(
                    f"Failed to notify agent {agent.agent_id}: {result.error}",
                    extra={"context": {"agent_id": agent.agent_id, "error_code": result.error_code}},
                )
        logger.info(f"Notified {sent}/{len(agents)} agents")
        return sent

    async def push(self, event: str, data: dict, chat_id: Optional[str] = None) -> None:
        """Push a live event to dashboards and, when given, to the chat's web user."""
        await self.connections.broadcast_dashboard(event, data)
        if chat_id:
            await self.connections.send_to_chat(chat_id, event, data)
