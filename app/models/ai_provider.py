import uuid

from sqlalchemy import Column, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class AIProvider(Base):
    __tablename__ = "ai_providers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    total_requests = Column(Integer, nullable=False, default=0)
    success_rate = Column(Numeric(6, 2), nullable=False, default=100)
    avg_response_time = Column(Numeric(10, 2), nullable=False, default=0)
    updated_at = Column(TIMESTAMP(timezone=True))
