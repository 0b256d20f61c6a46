from app.logging_config import get_logger
from app.services.llm.base import ProviderAdapter, ProviderConfig, ProviderReply
from app.services.prompt_service import build_messages, build_system_prompt

logger = get_logger("llm.openai")


class OpenAICompatibleProvider(ProviderAdapter):
    """OpenAI-style chat completions (Groq and compatible hosts)."""

    async def call(self, message, context, language, config: ProviderConfig) -> ProviderReply:
        messages = [{"role": "system", "content": build_system_prompt(context, language)}]
        messages.extend(build_messages(message, context))
        payload = {
            "model": config.model,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        logger.debug(f"{config.name} request: model={config.model}, messages_count={len(messages)}")
        data = await self._post_json(
            config,
            f"{config.base_url}/chat/completions",
            {
                "Authorization": f"Bearer {config.api_key or ''}",
                "Content-Type": "application/json",
            },
            payload,
        )
        text = self._extract(config, data, lambda d: d["choices"][0]["message"]["content"])
        return ProviderReply(text=text, model=data.get("model", config.model), usage=data.get("usage"))
