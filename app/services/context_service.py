"""Per-message conversation context and the data access it is built from."""

from dataclasses import dataclass
from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Conversation, Customer, SendingIdentity
from app.schemas.context import (
    ConversationContext,
    CustomerProfile,
    HistoryMessage,
    OrderSummary,
    PackageSummary,
)
from app.services import conversation_service
from app.services.identity_service import record_identity_send
from app.services.stage_service import classify, get_stage_prompt

logger = get_logger("context_service")


class ContextBuildError(Exception):
    """Context for one inbound message could not be assembled."""


@dataclass
class ConversationHandle:
    conversation_id: UUID
    customer: CustomerProfile


class ConversationStore(Protocol):
    async def open_conversation(self, phone: str, name: Optional[str], identity_id) -> ConversationHandle: ...

    async def save_inbound(self, conversation_id, text: str, language: str) -> None: ...

    async def update_language(self, customer_id, language: str) -> bool: ...

    async def message_count(self, conversation_id) -> int: ...

    async def recent_messages(self, conversation_id, limit: int) -> List[HistoryMessage]: ...

    async def customer_orders(self, customer_id, limit: int) -> List[OrderSummary]: ...

    async def active_packages(self) -> List[PackageSummary]: ...

    async def save_reply(self, conversation_id, text: str, provider_name: str, stage: str) -> None: ...

    async def record_identity_send(self, identity_id) -> None: ...

    async def commit(self) -> None: ...

    async def close(self) -> None: ...


def _role(sender: str) -> str:
    return "customer" if sender == "customer" else "assistant"


class SqlConversationStore:
    """ConversationStore over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _conversation(self, conversation_id) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise ContextBuildError(f"Conversation not found: {conversation_id}")
        return conversation

    async def open_conversation(self, phone, name, identity_id) -> ConversationHandle:
        customer = conversation_service.get_or_create_customer(self.db, phone, name)
        conversation = conversation_service.get_or_create_conversation(self.db, customer.id, identity_id)
        return ConversationHandle(
            conversation_id=conversation.id,
            customer=CustomerProfile(
                id=customer.id,
                name=customer.name or "Customer",
                phone=customer.phone_number,
                language=customer.language_preference or "roman_urdu",
                total_orders=customer.total_orders or 0,
            ),
        )

    async def save_inbound(self, conversation_id, text, language) -> None:
        conversation_service.save_message(
            self.db, self._conversation(conversation_id), "customer", text, language=language
        )

    async def update_language(self, customer_id, language) -> bool:
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            raise ContextBuildError(f"Customer not found: {customer_id}")
        return conversation_service.update_language_preference(self.db, customer, language)

    async def message_count(self, conversation_id) -> int:
        return self._conversation(conversation_id).message_count or 0

    async def recent_messages(self, conversation_id, limit) -> List[HistoryMessage]:
        rows = conversation_service.get_recent_messages(self.db, conversation_id, limit)
        return [HistoryMessage(role=_role(row.sender), text=row.content, timestamp=row.created_at) for row in rows]

    async def customer_orders(self, customer_id, limit) -> List[OrderSummary]:
        rows = conversation_service.get_customer_orders(self.db, customer_id, limit)
        return [
            OrderSummary(
                id=row.id,
                package=row.package_name,
                amount=float(row.total_amount or 0),
                status=row.status,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def active_packages(self) -> List[PackageSummary]:
        return [
            PackageSummary(
                id=row.id,
                name=row.name,
                price=float(row.price),
                features=list(row.features or []),
                popular=bool(row.is_popular),
            )
            for row in conversation_service.get_active_packages(self.db)
        ]

    async def save_reply(self, conversation_id, text, provider_name, stage) -> None:
        conversation = self._conversation(conversation_id)
        conversation_service.save_message(self.db, conversation, "bot", text, ai_provider=provider_name)
        conversation_service.update_conversation_stage(self.db, conversation, stage)

    async def record_identity_send(self, identity_id) -> None:
        identity = self.db.get(SendingIdentity, identity_id)
        if identity is not None:
            record_identity_send(self.db, identity)

    async def commit(self) -> None:
        self.db.commit()

    async def close(self) -> None:
        self.db.close()


async def build_context(
    store: ConversationStore,
    handle: ConversationHandle,
    inbound_text: str,
    language: str,
    history_limit: Optional[int] = None,
    orders_limit: Optional[int] = None,
) -> ConversationContext:
    """Compose a fresh context for one inbound message.

    The inbound message is expected to be persisted already; it takes part in
    stage classification but is left out of ``history`` since providers get it
    separately.
    """
    history_limit = history_limit or settings.context_history_limit
    orders_limit = orders_limit or settings.context_orders_limit
    customer = handle.customer
    if customer.id is None:
        raise ContextBuildError("Customer record missing")

    recent = await store.recent_messages(handle.conversation_id, history_limit)
    orders = await store.customer_orders(customer.id, orders_limit)
    packages = await store.active_packages()
    message_count = await store.message_count(handle.conversation_id)

    stage = classify(orders, recent, message_count=message_count)

    history = list(recent)
    if history and history[-1].role == "customer" and history[-1].text == inbound_text:
        history = history[:-1]

    logger.debug(
        "Context built",
        extra={
            "context": {
                "conversation_id": str(handle.conversation_id),
                "stage": stage.value,
                "history": len(history),
                "orders": len(orders),
            }
        },
    )
    return ConversationContext(
        conversation_id=handle.conversation_id,
        customer=customer,
        history=history,
        orders=orders,
        packages=packages,
        stage=stage,
        system_prompt=get_stage_prompt(stage, language),
        language=language,
        message_count=message_count,
    )
