from supportrelay.services.auto_responder import AutoReply, AutoReplyRule, auto_reply, load_rules
from supportrelay.services.chat_router import ChatRouter, InboundMessage, RouteAction, RouteOutcome
from supportrelay.services.result import Result
from supportrelay.services.session_registry import ChannelMismatchError, SessionRegistry
from supportrelay.services.state_machine import (
    ChatMode,
    InvalidTransitionError,
    can_transition,
    release,
    take_over,
    transition,
)
