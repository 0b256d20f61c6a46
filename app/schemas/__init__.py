from app.schemas.context import (
    ConversationContext,
    CustomerProfile,
    HistoryMessage,
    OrderSummary,
    PackageSummary,
)
from app.schemas.webhook import InboundMessage, WebhookRequest, WebhookResponse

__all__ = [
    "ConversationContext",
    "CustomerProfile",
    "HistoryMessage",
    "OrderSummary",
    "PackageSummary",
    "InboundMessage",
    "WebhookRequest",
    "WebhookResponse",
]
