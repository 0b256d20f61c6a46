import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    identity_id = Column(UUID(as_uuid=True), ForeignKey("sending_identities.id"))
    status = Column(Text, nullable=False)  # active, closed
    stage = Column(Text)  # last classified stage
    message_count = Column(Integer, nullable=False, default=0)
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_message_at = Column(TIMESTAMP(timezone=True))
    context = Column(JSONB, nullable=False, default=dict)

    customer = relationship("Customer", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
