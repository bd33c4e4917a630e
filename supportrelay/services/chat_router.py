from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from supportrelay.logging_config import chat_logger, get_logger
from supportrelay.services import socket_manager, state_service
from supportrelay.services.auto_responder import DEFAULT_RULES, MSG_ESCALATION_ACK, AutoReplyRule, auto_reply
from supportrelay.services.chat_session import (
    AgentChannel,
    AgentRef,
    Attachment,
    ChatMessage,
    ChatSession,
    OriginChannel,
    Participant,
    Sender,
)
from supportrelay.services.delivery_service import DeliveryService
from supportrelay.services.result import CHANNEL_MISMATCH, INVALID_STATE, MALFORMED, NOT_ASSIGNED, Result
from supportrelay.services.session_registry import ChannelMismatchError, SessionRegistry
from supportrelay.services.session_store import NullSessionStore, SessionStore
from supportrelay.services.state_machine import ChatMode
from supportrelay.services.telegram_service import (
    build_open_chat_button,
    format_agent_notification,
    format_forwarded_user_message,
)

logger = get_logger("chat_router")


@dataclass
class InboundMessage:
    chat_id: str
    text: str
    origin: OriginChannel
    participant: Optional[Participant] = None
    address: Optional[str] = None
    attachment: Optional[Attachment] = None

    @property
    def body(self) -> str:
        if self.text:
            return self.text
        if self.attachment:
            return f"📎 {self.attachment.name}"
        return ""


class RouteAction(str, Enum):
    AUTO_REPLY = "auto_reply"
    ESCALATED = "escalated"
    FORWARDED = "forwarded"


@dataclass
class RouteOutcome:
    chat_id: str
    action: RouteAction
    created: bool = False
    reply: Optional[str] = None
    delivered: bool = False
    agent: Optional[AgentRef] = None
    appended: list[ChatMessage] = field(default_factory=list)


class ChatRouter:
    """Routes inbound user and agent messages according to the chat mode.

    State changes go through the registry under the chat's lock and are
    committed before any outbound delivery. Delivery and store failures are
    logged and never undo a committed change.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        delivery: DeliveryService,
        store: Optional[SessionStore] = None,
        rules: Sequence[AutoReplyRule] = DEFAULT_RULES,
        history_limit: int = 30,
        list_limit: int = 20,
        notify_on_new_chat: bool = True,
    ):
        self.registry = registry
        self.delivery = delivery
        self.store = store or NullSessionStore()
        self.rules = tuple(rules)
        self.history_limit = history_limit
        self.list_limit = list_limit
        self.notify_on_new_chat = notify_on_new_chat

    # Startup

    def hydrate(self) -> int:
        """Reload persisted sessions into the registry."""
        try:
            sessions = self.store.load_sessions()
        except Exception as e:
            logger.error(f"Failed to load sessions from store: {e}", exc_info=True)
            return 0

        loaded = self.registry.load(sessions)
        for session in sessions:
            agent = session.assigned_agent
            if agent and agent.channel == AgentChannel.TELEGRAM:
                self.registry.open_chat(agent.agent_id, session.chat_id)
        logger.info(f"Hydrated {loaded} sessions")
        return loaded

    # User side

    async def handle_user_message(self, inbound: InboundMessage) -> Result[RouteOutcome]:
        body = inbound.body
        if not inbound.chat_id or not body:
            return Result.failure("Message without chat id or content", MALFORMED)

        log = chat_logger("chat_router", inbound.chat_id)

        try:
            session, created = await self.registry.get_or_create(
                inbound.chat_id, inbound.origin, inbound.participant, inbound.address
            )
        except ChannelMismatchError as e:
            log.warning(str(e))
            return Result.failure(str(e), CHANNEL_MISMATCH)

        rules = self.rules

        def mutation(session: ChatSession) -> Result[RouteOutcome]:
            user_message = session.append(
                ChatMessage(sender=Sender.USER, body=body, attachment=inbound.attachment)
            )
            outcome = RouteOutcome(chat_id=session.chat_id, action=RouteAction.FORWARDED, created=created)
            outcome.appended.append(user_message)

            if session.mode == ChatMode.HUMAN:
                outcome.agent = session.assigned_agent
                return Result.success(outcome)

            reply = auto_reply(body, rules)
            if reply.escalate:
                session.escalation_requested = True
            outcome.action = RouteAction.ESCALATED if reply.escalate else RouteAction.AUTO_REPLY
            outcome.reply = reply.text
            outcome.appended.append(session.append(ChatMessage(sender=Sender.BOT, body=reply.text)))
            return Result.success(outcome)

        # Nothing yields between creation and this update, so the first
        # message of a new chat is appended before any concurrent one.
        result = await self.registry.update(inbound.chat_id, mutation)
        if not result.ok:
            return result

        outcome = result.value
        self._persist(session, outcome.appended)
        if created:
            await self._announce_new_session(session, body)
        for message in outcome.appended:
            await self._push_message(session, message)

        if outcome.action == RouteAction.FORWARDED:
            agent = outcome.agent
            log.info(f"Human mode: forwarding to agent {agent.agent_id if agent else 'none'}")
            if agent:
                sent = await self.delivery.to_agent(
                    agent, format_forwarded_user_message(session, body), attachment=inbound.attachment
                )
                outcome.delivered = self._log_delivery(sent, session.chat_id, "forward_to_agent")
            return Result.success(outcome)

        bot_message = outcome.appended[-1]
        sent = await self.delivery.to_user(session.chat_id, session.origin, session.address, bot_message)
        outcome.delivered = self._log_delivery(sent, session.chat_id, "bot_reply")

        if outcome.action == RouteAction.ESCALATED:
            await self._announce_escalation(session, body)

        log.info(f"Bot mode: {outcome.action.value}", extra={"context": {"delivered": outcome.delivered}})
        return Result.success(outcome)

    async def request_escalation(
        self, chat_id: str, origin: Optional[OriginChannel] = None
    ) -> Result[ChatSession]:
        """Explicit request for a human, outside of the trigger phrases.

        With `origin` given an unseen chat is created first.
        """
        created = False
        if origin is not None:
            try:
                _, created = await self.registry.get_or_create(chat_id, origin)
            except ChannelMismatchError as e:
                return Result.failure(str(e), CHANNEL_MISMATCH)

        def mutation(session: ChatSession) -> Result[ChatMessage]:
            if session.mode == ChatMode.HUMAN:
                return Result.failure(f"Chat {chat_id} is already handled by an agent", INVALID_STATE)
            session.escalation_requested = True
            return Result.success(session.append(ChatMessage(sender=Sender.BOT, body=MSG_ESCALATION_ACK)))

        result = await self.registry.update(chat_id, mutation)
        if not result.ok:
            return Result.failure(result.error, result.error_code)

        session = self.registry.get(chat_id)
        ack = result.value
        self._persist(session, [ack])
        if created:
            await self._announce_new_session(session, None)
        await self._push_message(session, ack)
        sent = await self.delivery.to_user(chat_id, session.origin, session.address, ack)
        self._log_delivery(sent, chat_id, "escalation_ack")
        await self._announce_escalation(session, "[Human support requested]")
        return Result.success(session)

    async def update_participant(
        self,
        chat_id: str,
        participant: Participant,
        origin: OriginChannel = OriginChannel.WEB,
    ) -> Result[ChatSession]:
        try:
            session, created = await self.registry.get_or_create(chat_id, origin, participant)
        except ChannelMismatchError as e:
            return Result.failure(str(e), CHANNEL_MISMATCH)

        self._persist(session, [])
        if created:
            await self._announce_new_session(session, None)
        else:
            await self.delivery.push(socket_manager.SESSION_UPDATED, session.summary())
        return Result.success(session)

    # Agent side

    def register_agent(self, agent: AgentRef) -> bool:
        is_new = self.registry.register_agent(agent)
        logger.info(
            f"Agent {agent.name} ({agent.agent_id}) registered",
            extra={"context": {"agents_total": len(self.registry.registered_agents())}},
        )
        return is_new

    def list_sessions(self, limit: Optional[int] = None) -> list[ChatSession]:
        return self.registry.list_sessions(limit or self.list_limit)

    def sessions_for_user(self, user_id: str) -> list[ChatSession]:
        return self.registry.sessions_for_user(user_id)

    def get_session(self, chat_id: str) -> Optional[ChatSession]:
        return self.registry.get(chat_id)

    def history(self, chat_id: str, limit: Optional[int] = None) -> list[ChatMessage]:
        session = self.registry.get(chat_id)
        if session is None:
            return []
        limit = limit or self.history_limit
        return list(session.messages[-limit:])

    def snapshot(self) -> list[dict]:
        return [session.to_dict() for session in self.registry.list_sessions()]

    async def take_over(self, chat_id: str, agent: AgentRef) -> Result[ChatSession]:
        result = await self.registry.update(chat_id, lambda session: state_service.take_over(session, agent))
        if not result.ok:
            logger.warning(
                f"Takeover of {chat_id} by {agent.name} refused: {result.error}",
                extra={"context": {"chat_id": chat_id, "error_code": result.error_code}},
            )
            return Result.failure(result.error, result.error_code)

        session = self.registry.get(chat_id)
        if agent.channel == AgentChannel.TELEGRAM:
            self.registry.open_chat(agent.agent_id, chat_id)

        transition = result.value
        if transition.changed:
            await self._after_transition(session, transition.notice)
        return Result.success(session)

    async def release(self, chat_id: str, agent: Optional[AgentRef] = None) -> Result[ChatSession]:
        result = await self.registry.update(chat_id, lambda session: state_service.release(session, agent))
        if not result.ok:
            return Result.failure(result.error, result.error_code)

        session = self.registry.get(chat_id)
        transition = result.value
        await self._after_transition(session, transition.notice)

        departed = transition.agent
        if departed and self.registry.open_chat_of(departed.agent_id) == chat_id:
            self.registry.close_chat(departed.agent_id)
            if agent is None and departed.channel == AgentChannel.TELEGRAM:
                sent = await self.delivery.to_agent(departed, f"🔓 Chat <code>{chat_id}</code> was returned to the bot")
                self._log_delivery(sent, chat_id, "release_notice")

        return Result.success(session)

    async def release_open_chat(self, agent: AgentRef) -> Result[ChatSession]:
        chat_id = self.registry.close_chat(agent.agent_id)
        if not chat_id:
            return Result.failure("No chat is currently opened.", NOT_ASSIGNED)
        return await self.release(chat_id, agent)

    async def handle_agent_message(
        self,
        agent: AgentRef,
        text: str,
        attachment: Optional[Attachment] = None,
        chat_id: Optional[str] = None,
    ) -> Result[ChatSession]:
        """Relay an agent reply to the user; only the assigned agent may reply."""
        chat_id = chat_id or self.registry.open_chat_of(agent.agent_id)
        if not chat_id:
            return Result.failure("No chat opened", NOT_ASSIGNED)

        body = text or (f"📎 {attachment.name}" if attachment else "")
        if not body:
            return Result.failure("Empty agent message", MALFORMED)

        def mutation(session: ChatSession) -> Result[ChatMessage]:
            owner = session.assigned_agent
            if session.mode != ChatMode.HUMAN or owner is None or owner.agent_id != agent.agent_id:
                return Result.failure(f"Chat {chat_id} is not assigned to {agent.name}", NOT_ASSIGNED)
            return Result.success(session.append(ChatMessage.from_agent(agent, body, attachment)))

        result = await self.registry.update(chat_id, mutation)
        if not result.ok:
            return Result.failure(result.error, result.error_code)

        session = self.registry.get(chat_id)
        message = result.value
        self._persist(session, [message])
        await self._push_message(session, message)
        sent = await self.delivery.to_user(chat_id, session.origin, session.address, message)
        self._log_delivery(sent, chat_id, "agent_reply")
        return Result.success(session)

    # Internals

    async def _announce_new_session(self, session: ChatSession, first_text: Optional[str]) -> None:
        await self.delivery.push(socket_manager.SESSION_CREATED, session.summary())
        if self.notify_on_new_chat and self.registry.registered_agents():
            await self.delivery.notify_agents(
                self.registry.registered_agents(),
                format_agent_notification(session, first_text or "[Chat started]", "new_chat"),
                reply_markup=build_open_chat_button(session.chat_id),
            )

    async def _announce_escalation(self, session: ChatSession, text: str) -> None:
        await self.delivery.push(socket_manager.ESCALATION_REQUESTED, session.summary())
        agents = self.registry.registered_agents()
        if not agents:
            logger.warning(f"Escalation for {session.chat_id} but no agents registered")
            return
        await self.delivery.notify_agents(
            agents,
            format_agent_notification(session, text, "escalation"),
            reply_markup=build_open_chat_button(session.chat_id),
        )

    async def _after_transition(self, session: ChatSession, notice: Optional[ChatMessage]) -> None:
        violations = state_service.check_invariants(session)
        if violations:
            logger.error(
                f"Invariant violations on {session.chat_id}",
                extra={"context": {"chat_id": session.chat_id, "violations": violations}},
            )
        appended = [notice] if notice else []
        self._persist(session, appended)
        for message in appended:
            await self._push_message(session, message)
        await self.delivery.push(socket_manager.MODE_CHANGED, session.summary(), chat_id=session.chat_id)

    async def _push_message(self, session: ChatSession, message: ChatMessage) -> None:
        await self.delivery.push(
            socket_manager.MESSAGE_APPENDED,
            {"chat_id": session.chat_id, "mode": session.mode.value, "message": message.to_dict()},
        )

    def _persist(self, session: ChatSession, messages: Sequence[ChatMessage]) -> None:
        try:
            self.store.upsert_session(session)
            for message in messages:
                self.store.append_message(session.chat_id, message)
        except Exception as e:
            logger.error(
                f"Store write failed for {session.chat_id}: {e}",
                extra={"context": {"chat_id": session.chat_id}},
            )

    @staticmethod
    def _log_delivery(result: Result, chat_id: str, kind: str) -> bool:
        if result.ok:
            return True
        logger.warning(
            f"Delivery failed ({kind}) for {chat_id}: {result.error}",
            extra={"context": {"chat_id": chat_id, "kind": kind, "error_code": result.error_code}},
        )
        return False
