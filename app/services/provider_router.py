"""Priority-ordered text generation with sequential fallback."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx

from app.config import Settings, settings
from app.logging_config import get_logger
from app.schemas.context import ConversationContext
from app.services.data_loader import load_data_table
from app.services.llm import ADAPTERS, ProviderAdapter, ProviderConfig
from app.services.telemetry_service import InMemoryTelemetrySink, ProviderAttempt, TelemetrySink

logger = get_logger("provider_router")

TEST_PROMPT = "Hello, this is a test message."
TEST_SYSTEM_PROMPT = "Respond with a short greeting."


class AllProvidersFailedError(Exception):
    """Every enabled provider failed for one request."""

    def __init__(self, message: str, last_error: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class _AttemptFailed(Exception):
    def __init__(self, message: str, latency_ms: int):
        super().__init__(message)
        self.message = message
        self.latency_ms = latency_ms


@dataclass
class ProviderDescriptor:
    name: str
    adapter: str
    priority: int
    config: ProviderConfig
    enabled: bool = True
    cost_per_1k_tokens: float = 0.0
    rate_limit: dict = field(default_factory=dict)
    total_requests: int = 0
    success_rate: float = 100.0
    avg_response_time: float = 0.0

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.config.api_key)

    def record(self, success: bool, latency_ms: float) -> None:
        """Fold one attempt into the rolling averages."""
        n = self.total_requests
        self.success_rate = (self.success_rate * n + (100.0 if success else 0.0)) / (n + 1)
        self.avg_response_time = (self.avg_response_time * n + latency_ms) / (n + 1)
        self.total_requests = n + 1


@dataclass
class RoutedResponse:
    text: str
    provider_name: str
    model: str
    latency_ms: int


def load_provider_descriptors(config: Settings = settings) -> List[ProviderDescriptor]:
    descriptors = []
    for entry in load_data_table("providers").get("providers") or []:
        api_key = getattr(config, entry.get("api_key_setting", ""), None)
        descriptors.append(
            ProviderDescriptor(
                name=entry["name"],
                adapter=entry["adapter"],
                priority=int(entry["priority"]),
                enabled=bool(entry.get("enabled", True)),
                cost_per_1k_tokens=float(entry.get("cost_per_1k_tokens", 0)),
                rate_limit=dict(entry.get("rate_limit") or {}),
                config=ProviderConfig(
                    name=entry["name"],
                    base_url=entry["base_url"],
                    model=entry["model"],
                    api_key=api_key,
                    max_tokens=int(entry.get("max_tokens", 1024)),
                    temperature=float(entry.get("temperature", 0.7)),
                    timeout_seconds=config.provider_timeout_seconds,
                ),
            )
        )
    return descriptors


class ProviderRouter:
    def __init__(
        self,
        descriptors: List[ProviderDescriptor],
        adapters: Dict[str, ProviderAdapter],
        telemetry: Optional[TelemetrySink] = None,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.perf_counter,
    ):
        missing = [d.name for d in descriptors if d.name not in adapters]
        if missing:
            raise ValueError(f"No adapter registered for providers: {', '.join(missing)}")
        self.descriptors = list(descriptors)
        self.adapters = adapters
        self.telemetry = telemetry if telemetry is not None else InMemoryTelemetrySink()
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def ordered_providers(self) -> List[ProviderDescriptor]:
        # sorted() is stable: equal priorities keep configuration order
        return sorted((d for d in self.descriptors if d.available), key=lambda d: d.priority)

    def _record(self, descriptor: ProviderDescriptor, attempt: ProviderAttempt) -> None:
        descriptor.record(attempt.success, attempt.latency_ms)
        try:
            self.telemetry.record_attempt(attempt, descriptor)
        except Exception as e:
            logger.error(
                "Failed to record provider attempt",
                extra={"context": {"provider": descriptor.name, "error": str(e)}},
            )

    async def _attempt(self, descriptor, message, context, language) -> RoutedResponse:
        adapter = self.adapters[descriptor.name]
        started = self.clock()
        try:
            reply = await asyncio.wait_for(
                adapter.call(message, context, language, descriptor.config),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            latency_ms = int((self.clock() - started) * 1000)
            raise _AttemptFailed(f"{descriptor.name} timed out after {self.timeout_seconds}s", latency_ms)
        except Exception as e:
            latency_ms = int((self.clock() - started) * 1000)
            raise _AttemptFailed(str(e) or e.__class__.__name__, latency_ms) from e

        latency_ms = int((self.clock() - started) * 1000)
        return RoutedResponse(text=reply.text, provider_name=descriptor.name, model=reply.model, latency_ms=latency_ms)

    async def get_response(self, message: str, context: ConversationContext, language) -> RoutedResponse:
        """Return the first successful provider's reply.

        Raises AllProvidersFailedError carrying the last error when every
        enabled provider failed, or when none is enabled.
        """
        providers = self.ordered_providers()
        if not providers:
            raise AllProvidersFailedError("No AI providers enabled")

        last_error = None
        for descriptor in providers:
            try:
                result = await self._attempt(descriptor, message, context, language)
            except _AttemptFailed as failure:
                last_error = failure.message
                logger.warning(
                    f"Provider {descriptor.name} failed",
                    extra={
                        "context": {
                            "provider": descriptor.name,
                            "error": failure.message,
                            "latency_ms": failure.latency_ms,
                        }
                    },
                )
                self._record(
                    descriptor,
                    ProviderAttempt(
                        provider=descriptor.name,
                        success=False,
                        latency_ms=failure.latency_ms,
                        request_text=message,
                        error_message=failure.message,
                    ),
                )
                continue

            self._record(
                descriptor,
                ProviderAttempt(
                    provider=descriptor.name,
                    success=True,
                    latency_ms=result.latency_ms,
                    request_text=message,
                    response_text=result.text,
                ),
            )
            logger.info(
                "Provider responded",
                extra={"context": {"provider": descriptor.name, "latency_ms": result.latency_ms}},
            )
            return result

        raise AllProvidersFailedError(
            f"All AI providers failed. Last error: {last_error}",
            last_error=last_error,
            attempts=len(providers),
        )

    def get_provider_status(self) -> List[dict]:
        return [
            {
                "name": d.name,
                "enabled": d.available,
                "priority": d.priority,
                "model": d.config.model,
                "rate_limit": d.rate_limit,
                "cost_per_1k_tokens": d.cost_per_1k_tokens,
                "total_requests": d.total_requests,
                "success_rate": round(d.success_rate, 2),
                "avg_response_time": round(d.avg_response_time, 2),
                "adapter_ready": d.name in self.adapters,
            }
            for d in sorted(self.descriptors, key=lambda d: d.priority)
        ]

    async def test_provider(self, name: str) -> dict:
        descriptor = next((d for d in self.descriptors if d.name == name), None)
        if descriptor is None or not descriptor.available:
            return {"success": False, "error": "Provider not configured or disabled"}

        context = ConversationContext(system_prompt=TEST_SYSTEM_PROMPT, language="english")
        try:
            result = await self._attempt(descriptor, TEST_PROMPT, context, "english")
        except _AttemptFailed as failure:
            return {"success": False, "provider": name, "error": failure.message}
        return {
            "success": True,
            "provider": name,
            "response": result.text,
            "latency_ms": result.latency_ms,
        }


def build_provider_router(
    telemetry: Optional[TelemetrySink] = None,
    config: Settings = settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRouter:
    """Resolve every configured descriptor to its adapter once, at startup."""
    descriptors = load_provider_descriptors(config)
    adapters = {}
    for descriptor in descriptors:
        adapter_cls = ADAPTERS.get(descriptor.adapter)
        if adapter_cls is None:
            raise ValueError(f"Unknown provider adapter: {descriptor.adapter}")
        adapters[descriptor.name] = adapter_cls(transport=transport)
    logger.info(
        "Provider registry loaded",
        extra={"context": {"enabled": [d.name for d in descriptors if d.available]}},
    )
    return ProviderRouter(descriptors, adapters, telemetry=telemetry, timeout_seconds=config.provider_timeout_seconds)
