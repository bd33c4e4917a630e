import asyncio
from typing import Callable, Iterable, Optional, TypeVar

from supportrelay.logging_config import get_logger
from supportrelay.services.chat_session import AgentRef, ChatSession, OriginChannel, Participant
from supportrelay.services.result import UNKNOWN_SESSION, Result

logger = get_logger("session_registry")

T = TypeVar("T")


class ChannelMismatchError(ValueError):
    def __init__(self, chat_id: str, existing: OriginChannel, requested: OriginChannel):
        self.chat_id = chat_id
        self.existing = existing
        self.requested = requested
        super().__init__(f"Chat {chat_id} belongs to {existing.value}, not {requested.value}")


class SessionRegistry:
    """Owner of all in-memory chat state.

    Mutations of one chat run under that chat's lock; different chats never
    wait on each other. Also tracks the support agents that registered with
    the support bot and the chat each agent currently has open.
    """

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._agents: dict[str, AgentRef] = {}
        self._agent_chats: dict[str, str] = {}

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    async def get_or_create(
        self,
        chat_id: str,
        origin: OriginChannel,
        participant: Optional[Participant] = None,
        address: Optional[str] = None,
    ) -> tuple[ChatSession, bool]:
        """Return the chat's session, creating it in bot mode if unseen.

        Raises ChannelMismatchError when the id already belongs to the other channel.
        """
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is not None:
                if session.origin != origin:
                    raise ChannelMismatchError(chat_id, session.origin, origin)
                if participant is not None:
                    session.participant = (session.participant or Participant()).merged_with(participant)
                if address:
                    session.address = address
                return session, False

            session = ChatSession(chat_id=chat_id, origin=origin, participant=participant, address=address)
            self._sessions[chat_id] = session
            logger.info(
                f"New {origin.value} chat created: {chat_id}",
                extra={"context": {"chat_id": chat_id, "participant": session.display_name}},
            )
            return session, True

    async def update(self, chat_id: str, mutation: Callable[[ChatSession], Result[T]]) -> Result[T]:
        """Apply `mutation` atomically with respect to other mutations of the same chat."""
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is None:
                return Result.failure(f"Chat {chat_id} not found", UNKNOWN_SESSION)
            return mutation(session)

    def get(self, chat_id: str) -> Optional[ChatSession]:
        return self._sessions.get(chat_id)

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def list_sessions(self, limit: Optional[int] = None) -> list[ChatSession]:
        """Most recently active first; ties ordered by chat id."""
        ordered = sorted(self._sessions.values(), key=lambda s: s.chat_id)
        ordered.sort(key=lambda s: s.last_activity_at, reverse=True)
        return ordered[:limit] if limit else ordered

    def sessions_for_user(self, user_id: str) -> list[ChatSession]:
        return [
            session
            for session in self.list_sessions()
            if session.participant and session.participant.user_id == user_id
        ]

    def load(self, sessions: Iterable[ChatSession]) -> int:
        """Hydrate from a durable store. Existing in-memory sessions win."""
        loaded = 0
        for session in sessions:
            if session.chat_id in self._sessions:
                continue
            self._sessions[session.chat_id] = session
            loaded += 1
        return loaded

    # Agents

    def register_agent(self, agent: AgentRef) -> bool:
        """Returns True for a newly registered agent."""
        is_new = agent.agent_id not in self._agents
        self._agents[agent.agent_id] = agent
        return is_new

    def registered_agents(self) -> list[AgentRef]:
        return list(self._agents.values())

    def open_chat(self, agent_id: str, chat_id: str) -> None:
        self._agent_chats[agent_id] = chat_id

    def open_chat_of(self, agent_id: str) -> Optional[str]:
        return self._agent_chats.get(agent_id)

    def close_chat(self, agent_id: str) -> Optional[str]:
        return self._agent_chats.pop(agent_id, None)
