"""Keyword auto-replies used while the bot owns a chat."""

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Sequence

import yaml

from supportrelay.logging_config import get_logger

logger = get_logger("auto_responder")


@dataclass(frozen=True)
class AutoReplyRule:
    keywords: tuple[str, ...]
    reply: str


@dataclass(frozen=True)
class AutoReply:
    text: str
    escalate: bool = False
    rule_index: Optional[int] = None


ESCALATION_EXACT = {
    "agent",
    "human",
}

ESCALATION_SUBSTRINGS = [
    "talk to human",
    "speak to human",
    "human support",
    "real person",
]

MSG_ESCALATION_ACK = "🙋 I've notified our support team. An agent will join you shortly."
MSG_FALLBACK = "🤖 I'm not sure I understand. You can ask about prices, support, or type *agent* for human help."

DEFAULT_RULES: tuple[AutoReplyRule, ...] = (
    AutoReplyRule(
        keywords=("hello", "hi", "hey"),
        reply="👋 Hi there! I'm your virtual assistant. How can I help today?",
    ),
    AutoReplyRule(
        keywords=("price", "cost", "payment", "subscribe", "pricing", "plan", "plans"),
        reply=(
            "💸 Our pricing plans: Starter $49/month (up to 500 patients), "
            "Professional $99/month (unlimited patients, AI automation) 🌟 Popular, "
            "Premium $199/month (up to 12 practitioners), "
            "Enterprise (custom pricing for 12+ practitioners). All plans include free trial!"
        ),
    ),
    AutoReplyRule(
        keywords=("support", "help", "problem", "issue"),
        reply="🧑‍💻 I can guide you with basic support. If you want a human agent, just type *agent*.",
    ),
    AutoReplyRule(
        keywords=("hours", "time", "open", "schedule"),
        reply="⏰ Our support team is available 24/7 via chat or email.",
    ),
    AutoReplyRule(
        keywords=("bye", "thanks", "thank you"),
        reply="🙏 You're welcome! Feel free to reach out anytime.",
    ),
)


def normalize_for_matching(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().casefold())


def is_escalation_request(text: str) -> bool:
    normalized = normalize_for_matching(text)
    if not normalized:
        return False
    if normalized in ESCALATION_EXACT:
        return True
    return any(phrase in normalized for phrase in ESCALATION_SUBSTRINGS)


def match_rule(text: str, rules: Sequence[AutoReplyRule]) -> Optional[int]:
    """Index of the first rule with a keyword contained in text."""
    normalized = normalize_for_matching(text)
    if not normalized:
        return None
    for index, rule in enumerate(rules):
        if any(keyword.casefold() in normalized for keyword in rule.keywords):
            return index
    return None


def auto_reply(text: str, rules: Sequence[AutoReplyRule] = DEFAULT_RULES) -> AutoReply:
    """Escalation trigger first, then first matching rule, then the fallback."""
    if is_escalation_request(text):
        return AutoReply(text=MSG_ESCALATION_ACK, escalate=True)

    index = match_rule(text, rules)
    if index is not None:
        return AutoReply(text=rules[index].reply, rule_index=index)

    return AutoReply(text=MSG_FALLBACK)


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_rules(path: Optional[str]) -> tuple[AutoReplyRule, ...]:
    """Load rules from a YAML file with an `auto_replies` list.

    Falls back to DEFAULT_RULES when the path is unset, missing or empty.
    """
    if not path:
        return DEFAULT_RULES

    data = _load_yaml(Path(path))
    entries = data.get("auto_replies")
    if not isinstance(entries, list):
        logger.warning(f"No auto_replies list in {path}, using defaults")
        return DEFAULT_RULES

    rules = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        keywords = entry.get("keywords") or []
        reply = entry.get("reply")
        if isinstance(keywords, str):
            keywords = [keywords]
        keywords = tuple(str(keyword).strip() for keyword in keywords if str(keyword).strip())
        if not keywords or not reply:
            continue
        rules.append(AutoReplyRule(keywords=keywords, reply=str(reply)))

    if not rules:
        logger.warning(f"No usable rules in {path}, using defaults")
        return DEFAULT_RULES

    logger.info(f"Loaded {len(rules)} auto-reply rules from {path}")
    return tuple(rules)
