from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class InboundMessage(BaseModel):
    """One customer message as delivered by the WhatsApp gateway."""

    sender: str = Field(validation_alias=AliasChoices("sender", "from", "chat_id", "remoteJid"))
    text: str = Field(default="", validation_alias=AliasChoices("text", "body", "message"))
    identity_id: Optional[UUID] = Field(
        default=None,
        validation_alias=AliasChoices("identity_id", "identityId", "account_id"),
    )
    sender_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("sender_name", "pushName"))
    message_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("message_id", "messageId"))
    received_at: Optional[datetime] = None

    @property
    def conversation_key(self) -> str:
        return self.sender


class WebhookRequest(BaseModel):
    message: InboundMessage


class WebhookResponse(BaseModel):
    success: bool
    message: str
    queued: bool = False
