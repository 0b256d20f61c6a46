"""Sales stage classification.

Commercial state (open or completed orders) always wins over what the
customer is currently typing. Keyword tables live in ``app/data/keywords.yaml``
and stage prompts in ``app/data/prompts.yaml``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from app.services.data_loader import load_data_table
from app.services.language_service import prefers_urdu

KEYWORD_MESSAGE_WINDOW = 3
GREETING_MAX_MESSAGES = 2

ACTIVE_ORDER_STATUSES = {"pending", "in_progress"}
COMPLETED_ORDER_STATUS = "completed"
CUSTOMER_ROLE = "customer"


class Stage(str, Enum):
    POST_SALE = "post_sale"
    RETURNING_CUSTOMER = "returning_customer"
    PAYMENT = "payment"
    PRICING = "pricing"
    FEATURES = "features"
    GREETING = "greeting"
    SALES = "sales"


@dataclass(frozen=True)
class KeywordFamily:
    label: str
    keywords: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


def _families(section: str, label_key: str) -> Tuple[KeywordFamily, ...]:
    entries = load_data_table("keywords").get(section) or []
    return tuple(
        KeywordFamily(label=entry[label_key], keywords=tuple(kw.lower() for kw in entry.get("keywords") or []))
        for entry in entries
    )


def stage_keyword_families() -> Tuple[KeywordFamily, ...]:
    return _families("stage_keywords", "stage")


def intent_keyword_families() -> Tuple[KeywordFamily, ...]:
    return _families("intents", "intent")


def _get(item, name: str, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def _customer_text(recent_messages: Sequence, window: int = KEYWORD_MESSAGE_WINDOW) -> str:
    texts = [_get(message, "text") or "" for message in recent_messages if _get(message, "role") == CUSTOMER_ROLE]
    return " ".join(texts[-window:]).lower()


def classify(order_history: Iterable, recent_messages: Sequence, message_count: Optional[int] = None) -> Stage:
    """Derive the conversation stage. Pure: same inputs, same stage.

    ``recent_messages`` is chronological; ``message_count`` defaults to its length.
    """
    statuses = {_get(order, "status") for order in order_history}
    if statuses & ACTIVE_ORDER_STATUSES:
        return Stage.POST_SALE
    if COMPLETED_ORDER_STATUS in statuses:
        return Stage.RETURNING_CUSTOMER

    text = _customer_text(recent_messages)
    if text:
        for family in stage_keyword_families():
            if family.matches(text):
                return Stage(family.label)

    count = len(recent_messages) if message_count is None else message_count
    if count <= GREETING_MAX_MESSAGES:
        return Stage.GREETING
    return Stage.SALES


def get_stage_prompt(stage, language) -> str:
    """System prompt template for a stage in the customer's language variant."""
    prompts = load_data_table("prompts")
    variant = "urdu" if prefers_urdu(language) else "english"
    code = stage.value if isinstance(stage, Stage) else str(stage)

    stages = prompts.get("stages") or {}
    derived = (prompts.get("derived") or {}).get(code)
    if derived:
        base = stages[derived["base"]][variant]
        return f"{base}\n\n{derived['suffix']}"
    template = stages.get(code) or stages[Stage.SALES.value]
    return template[variant]


def extract_intent(text: Optional[str]) -> str:
    lowered = (text or "").lower()
    for family in intent_keyword_families():
        if family.matches(lowered):
            return family.label
    return "general"


def summarize_conversation(messages: Sequence) -> Optional[dict]:
    """Counts and topics for a chronological message list; None when empty."""
    if not messages:
        return None

    customer_messages = [m for m in messages if _get(m, "role") == CUSTOMER_ROLE]
    text = " ".join(_get(m, "text") or "" for m in customer_messages).lower()
    topics = [
        topic
        for topic, keywords in (load_data_table("keywords").get("summary_topics") or {}).items()
        if any(keyword in text for keyword in keywords)
    ]

    return {
        "total_messages": len(messages),
        "customer_messages": len(customer_messages),
        "assistant_messages": len(messages) - len(customer_messages),
        "topics": topics,
        "first_message_at": _get(messages[0], "timestamp"),
        "last_message_at": _get(messages[-1], "timestamp"),
    }
