import uuid

from sqlalchemy import Column, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    package_id = Column(UUID(as_uuid=True), ForeignKey("packages.id"))
    identity_id = Column(UUID(as_uuid=True), ForeignKey("sending_identities.id"))
    package_name = Column(Text)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Text, nullable=False)  # pending, in_progress, completed, cancelled
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    customer = relationship("Customer", back_populates="orders")
