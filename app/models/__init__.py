from app.models.ai_provider import AIProvider
from app.models.conversation import Conversation
from app.models.customer import Customer
from app.models.message import Message
from app.models.order import Order
from app.models.package import Package
from app.models.provider_call_log import ProviderCallLog
from app.models.sending_identity import SendingIdentity

__all__ = [
    "Customer",
    "Conversation",
    "Message",
    "Order",
    "Package",
    "SendingIdentity",
    "AIProvider",
    "ProviderCallLog",
]
