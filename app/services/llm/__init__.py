from app.services.llm.anthropic_provider import AnthropicProvider
from app.services.llm.base import ProviderAdapter, ProviderConfig, ProviderError, ProviderReply
from app.services.llm.cohere_provider import CohereProvider
from app.services.llm.gemini_provider import GeminiProvider
from app.services.llm.openai_provider import OpenAICompatibleProvider

ADAPTERS = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "openai_compatible": OpenAICompatibleProvider,
    "cohere": CohereProvider,
}

__all__ = [
    "ADAPTERS",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderError",
    "ProviderReply",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "CohereProvider",
]
