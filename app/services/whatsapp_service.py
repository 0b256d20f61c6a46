"""Outbound send through the WhatsApp gateway's HTTP API."""

import re
from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger
from app.services.result import Result

logger = get_logger("whatsapp_service")

DEFAULT_COUNTRY_CODE = "92"
GROUP_SUFFIX = "@g.us"
CHAT_SUFFIX = "@c.us"

_PHONE_NOISE = re.compile(r"[\s\-()]")


def format_phone(phone: str) -> str:
    """Digits with country code: 03001234567 -> 923001234567."""
    formatted = _PHONE_NOISE.sub("", phone or "").lstrip("+")
    if formatted.startswith("0"):
        formatted = DEFAULT_COUNTRY_CODE + formatted[1:]
    if not formatted.startswith(DEFAULT_COUNTRY_CODE):
        formatted = DEFAULT_COUNTRY_CODE + formatted
    return formatted


def to_chat_id(phone: str) -> str:
    if phone.endswith(CHAT_SUFFIX):
        return phone
    return f"{format_phone(phone)}{CHAT_SUFFIX}"


def from_chat_id(chat_id: str) -> str:
    return chat_id.replace(CHAT_SUFFIX, "").replace(GROUP_SUFFIX, "")


def is_group_chat(chat_id: Optional[str]) -> bool:
    return bool(chat_id) and chat_id.endswith(GROUP_SUFFIX)


class WhatsAppGatewaySender:
    """Send collaborator. One call per dispatched reply, never retried here."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.whatsapp_gateway_url).rstrip("/")
        self.token = token if token is not None else settings.whatsapp_gateway_token
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def send(self, identity_id, destination: str, text: str) -> Result[str]:
        if not text:
            return Result.failure("Empty message", "empty_message")

        chat_id = to_chat_id(destination)
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = {"identity_id": str(identity_id), "chat_id": chat_id, "message": text}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/messages/send", headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}", extra={"context": {"chat_id": chat_id}})
            return Result.failure(str(e), "transport_error")

        logger.info(
            f"Gateway response: status={response.status_code}, chat_id={chat_id}, body={response.text[:200]}"
        )
        if response.status_code not in (200, 201):
            return Result.failure(f"Gateway error: {response.status_code} - {response.text[:200]}", "gateway_error")

        try:
            message_id = (response.json() or {}).get("message_id")
        except ValueError:
            message_id = None
        return Result.success(message_id or chat_id)
