import uuid

from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class SendingIdentity(Base):
    __tablename__ = "sending_identities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number = Column(Text, nullable=False, unique=True)
    display_name = Column(Text)
    status = Column(Text, nullable=False, default="disconnected")  # disconnected, connecting, authenticated, ready
    risk_tier = Column(Text, nullable=False, default="low")  # low, medium, high
    is_primary = Column(Boolean, nullable=False, default=False)
    messages_sent_today = Column(Integer, nullable=False, default=0)
    daily_limit = Column(Integer, nullable=False, default=1000)
    last_status_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True))
