from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from app.logging_config import get_logger

logger = get_logger("llm")


class ProviderError(Exception):
    """A single provider attempt failed (transport, status, or payload)."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


@dataclass
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: Optional[str] = None
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout_seconds: float = 30.0
    extra: dict = field(default_factory=dict)


@dataclass
class ProviderReply:
    text: str
    model: str
    usage: Optional[dict] = None


class ProviderAdapter(ABC):
    """One backend's request/response shape behind a uniform call."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    @abstractmethod
    async def call(self, message: str, context, language, config: ProviderConfig) -> ProviderReply:
        """Generate a reply or raise ProviderError."""
        pass

    async def _post_json(self, config: ProviderConfig, url: str, headers: dict, payload: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=config.timeout_seconds, transport=self.transport) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(config.name, f"{config.name} transport error: {e}") from e

        logger.debug(f"{config.name} response status: {response.status_code}")
        if response.status_code != 200:
            raise ProviderError(
                config.name,
                f"{config.name} API error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(config.name, f"{config.name} returned invalid JSON") from e

    @staticmethod
    def _extract(config: ProviderConfig, data: dict, getter) -> str:
        try:
            text = getter(data)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(config.name, f"{config.name} malformed response: {e!r}") from e
        if not isinstance(text, str) or not text.strip():
            raise ProviderError(config.name, f"{config.name} returned empty text")
        return text
