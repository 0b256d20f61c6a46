from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.services.stage_service import Stage


class HistoryMessage(BaseModel):
    role: str  # customer, assistant
    text: str
    timestamp: Optional[datetime] = None


class OrderSummary(BaseModel):
    id: Optional[UUID] = None
    package: Optional[str] = None
    amount: float = 0
    status: str
    created_at: Optional[datetime] = None


class PackageSummary(BaseModel):
    id: Optional[UUID] = None
    name: str
    price: float
    features: List[str] = Field(default_factory=list)
    popular: bool = False


class CustomerProfile(BaseModel):
    id: Optional[UUID] = None
    name: str = "Customer"
    phone: Optional[str] = None
    language: str = "roman_urdu"
    total_orders: int = 0


class ConversationContext(BaseModel):
    conversation_id: Optional[UUID] = None
    customer: CustomerProfile = Field(default_factory=CustomerProfile)
    history: List[HistoryMessage] = Field(default_factory=list)
    orders: List[OrderSummary] = Field(default_factory=list)
    packages: List[PackageSummary] = Field(default_factory=list)
    stage: Stage = Stage.GREETING
    system_prompt: str = ""
    language: str = "roman_urdu"
    message_count: int = 0
