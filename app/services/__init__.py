from app.services.conversation_service import (
    get_or_create_conversation,
    get_or_create_customer,
    save_message,
)
from app.services.result import Result
