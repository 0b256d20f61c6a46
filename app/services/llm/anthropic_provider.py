from app.logging_config import get_logger
from app.services.llm.base import ProviderAdapter, ProviderConfig, ProviderReply
from app.services.prompt_service import build_messages, build_system_prompt

logger = get_logger("llm.anthropic")

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(ProviderAdapter):
    """Anthropic messages API (Claude)."""

    async def call(self, message, context, language, config: ProviderConfig) -> ProviderReply:
        payload = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "system": build_system_prompt(context, language),
            "messages": build_messages(message, context),
        }
        logger.debug(f"Anthropic request: model={config.model}, messages_count={len(payload['messages'])}")
        data = await self._post_json(
            config,
            f"{config.base_url}/messages",
            {
                "Content-Type": "application/json",
                "x-api-key": config.api_key or "",
                "anthropic-version": ANTHROPIC_VERSION,
            },
            payload,
        )
        text = self._extract(config, data, lambda d: d["content"][0]["text"])
        return ProviderReply(text=text, model=data.get("model", config.model), usage=data.get("usage"))
