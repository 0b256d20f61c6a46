import uuid

from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    language_preference = Column(Text, default="roman_urdu")  # urdu, roman_urdu, english
    status = Column(Text, default="active")
    total_orders = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_contact_at = Column(TIMESTAMP(timezone=True))

    conversations = relationship("Conversation", back_populates="customer")
    orders = relationship("Order", back_populates="customer")
