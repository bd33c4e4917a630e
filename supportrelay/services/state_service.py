from dataclasses import dataclass
from typing import Optional

from supportrelay.logging_config import get_logger
from supportrelay.services import state_machine
from supportrelay.services.chat_session import AgentRef, ChatMessage, ChatSession, Sender
from supportrelay.services.result import ALREADY_ASSIGNED, INVALID_STATE, NOT_ASSIGNED, Result
from supportrelay.services.state_machine import ChatMode, InvalidTransitionError

logger = get_logger("state_service")


@dataclass(frozen=True)
class Transition:
    """Outcome of a mode change: the agent involved and the SYSTEM notice it appended.

    `notice` is None when nothing changed.
    """

    agent: Optional[AgentRef]
    notice: Optional[ChatMessage] = None

    @property
    def changed(self) -> bool:
        return self.notice is not None


def take_over(session: ChatSession, agent: AgentRef) -> Result[Transition]:
    """Atomic bot -> human transition.

    A repeated takeover by the owning agent succeeds without a notice.
    """
    if session.mode == ChatMode.HUMAN and session.assigned_agent:
        if session.assigned_agent.agent_id == agent.agent_id:
            session.visited = True
            return Result.success(Transition(agent=agent))
        return Result.failure(
            f"Chat {session.chat_id} is already handled by {session.assigned_agent.name}",
            ALREADY_ASSIGNED,
        )

    try:
        session.mode = state_machine.take_over(session.mode)
    except InvalidTransitionError as e:
        return Result.failure(str(e), INVALID_STATE)

    session.assigned_agent = agent
    session.escalation_requested = False
    session.visited = True
    notice = session.append(ChatMessage(sender=Sender.SYSTEM, body=f"{agent.name} connected"))

    logger.info(f"Agent {agent.name} took chat {session.chat_id}")
    return Result.success(Transition(agent=agent, notice=notice))


def release(session: ChatSession, agent: Optional[AgentRef] = None) -> Result[Transition]:
    """Atomic human -> bot transition. The transition carries the agent that left.

    With `agent` given, only the assigned agent may release; without it the
    release is unconditional (dashboard supervisor action).
    """
    current = session.assigned_agent
    if agent is not None and (current is None or current.agent_id != agent.agent_id):
        return Result.failure(f"Chat {session.chat_id} is not assigned to {agent.name}", NOT_ASSIGNED)

    try:
        session.mode = state_machine.release(session.mode)
    except InvalidTransitionError as e:
        return Result.failure(str(e), INVALID_STATE)

    session.assigned_agent = None
    session.escalation_requested = False
    name = current.name if current else "Agent"
    notice = session.append(ChatMessage(sender=Sender.SYSTEM, body=f"{name} disconnected"))

    logger.info(f"Chat {session.chat_id} released by {name}")
    return Result.success(Transition(agent=current, notice=notice))


def check_invariants(session: ChatSession) -> list[str]:
    """Check session state invariants. Returns the list of violations."""
    violations = []

    if session.mode == ChatMode.HUMAN and session.assigned_agent is None:
        violations.append("human_without_agent")

    if session.mode == ChatMode.BOT and session.assigned_agent is not None:
        violations.append("bot_with_agent")

    timestamps = [message.timestamp for message in session.messages]
    if timestamps != sorted(timestamps):
        violations.append("messages_out_of_order")

    return violations
