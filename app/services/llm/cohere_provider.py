from app.logging_config import get_logger
from app.services.llm.base import ProviderAdapter, ProviderConfig, ProviderReply
from app.services.prompt_service import build_system_prompt

logger = get_logger("llm.cohere")


class CohereProvider(ProviderAdapter):
    """Cohere chat API: system prompt as preamble, history as chat_history."""

    async def call(self, message, context, language, config: ProviderConfig) -> ProviderReply:
        chat_history = [
            {"role": "USER" if item.role == "customer" else "CHATBOT", "message": item.text}
            for item in context.history
        ]
        payload = {
            "model": config.model,
            "message": message,
            "preamble": build_system_prompt(context, language),
            "chat_history": chat_history,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        logger.debug(f"Cohere request: model={config.model}, history={len(chat_history)}")
        data = await self._post_json(
            config,
            f"{config.base_url}/chat",
            {
                "Authorization": f"Bearer {config.api_key or ''}",
                "Content-Type": "application/json",
            },
            payload,
        )
        text = self._extract(config, data, lambda d: d["text"])
        return ProviderReply(text=text, model=config.model, usage=data.get("meta"))
