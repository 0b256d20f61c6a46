from app.logging_config import get_logger
from app.services.llm.base import ProviderAdapter, ProviderConfig, ProviderReply
from app.services.prompt_service import build_system_prompt, format_history

logger = get_logger("llm.gemini")


class GeminiProvider(ProviderAdapter):
    """Google generateContent API. Takes one flattened prompt."""

    async def call(self, message, context, language, config: ProviderConfig) -> ProviderReply:
        prompt = (
            f"{build_system_prompt(context, language)}\n\n"
            f"Conversation History:\n{format_history(context)}\n\n"
            f"Customer: {message}\n\nAssistant:"
        )
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
            },
        }
        logger.debug(f"Gemini request: model={config.model}, prompt_chars={len(prompt)}")
        data = await self._post_json(
            config,
            f"{config.base_url}/models/{config.model}:generateContent?key={config.api_key or ''}",
            {"Content-Type": "application/json"},
            payload,
        )
        text = self._extract(config, data, lambda d: d["candidates"][0]["content"]["parts"][0]["text"])
        return ProviderReply(text=text, model=config.model, usage=data.get("usageMetadata"))
