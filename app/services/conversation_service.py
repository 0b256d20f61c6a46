from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import Conversation, Customer, Message, Order, Package


def get_or_create_customer(db: Session, phone_number: str, name: Optional[str] = None) -> Customer:
    """Find customer by phone number or create new one."""
    customer = db.query(Customer).filter(Customer.phone_number == phone_number).first()

    if not customer:
        customer = Customer(phone_number=phone_number, name=name, created_at=datetime.now(timezone.utc))
        db.add(customer)
        db.flush()
    elif name and not customer.name:
        customer.name = name

    customer.last_contact_at = datetime.now(timezone.utc)
    return customer


def get_or_create_conversation(db: Session, customer_id: UUID, identity_id: Optional[UUID] = None) -> Conversation:
    """Find active conversation or create new one."""
    conversation = (
        db.query(Conversation)
        .filter(Conversation.customer_id == customer_id, Conversation.status == "active")
        .first()
    )

    if not conversation:
        conversation = Conversation(
            customer_id=customer_id,
            identity_id=identity_id,
            status="active",
            message_count=0,
            started_at=datetime.now(timezone.utc),
        )
        db.add(conversation)
        db.flush()

    return conversation


def save_message(
    db: Session,
    conversation: Conversation,
    sender: str,
    content: str,
    *,
    language: Optional[str] = None,
    ai_provider: Optional[str] = None,
    message_metadata: Optional[dict] = None,
) -> Message:
    """Save message and bump the conversation's counters."""
    now = datetime.now(timezone.utc)
    message = Message(
        conversation_id=conversation.id,
        customer_id=conversation.customer_id,
        sender=sender,
        content=content,
        language=language,
        ai_provider=ai_provider,
        message_metadata=message_metadata or {},
        created_at=now,
    )
    db.add(message)
    conversation.message_count = (conversation.message_count or 0) + 1
    conversation.last_message_at = now
    db.flush()
    return message


def get_recent_messages(db: Session, conversation_id: UUID, limit: int = 10) -> List[Message]:
    """Latest ``limit`` messages, oldest first."""
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def get_customer_orders(db: Session, customer_id: UUID, limit: int = 5) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
        .all()
    )


def get_active_packages(db: Session) -> List[Package]:
    return db.query(Package).filter(Package.is_active.is_(True)).order_by(Package.sort_order.asc()).all()


def update_language_preference(db: Session, customer: Customer, language: str) -> bool:
    """Store the detected language. Returns True when it changed."""
    if customer.language_preference == language:
        return False
    customer.language_preference = language
    db.flush()
    return True


def update_conversation_stage(db: Session, conversation: Conversation, stage: str) -> None:
    conversation.stage = stage
    db.flush()
