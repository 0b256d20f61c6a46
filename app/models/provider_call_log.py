import uuid

from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class ProviderCallLog(Base):
    __tablename__ = "provider_call_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)
    success = Column(Boolean, nullable=False)
    response_time_ms = Column(Integer, nullable=False)
    request_text = Column(Text)
    response_text = Column(Text)
    error_message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
