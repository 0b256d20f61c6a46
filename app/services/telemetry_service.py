"""Sinks for provider attempt telemetry."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import AIProvider, ProviderCallLog

logger = get_logger("telemetry_service")

REQUEST_TEXT_LIMIT = 500
RESPONSE_TEXT_LIMIT = 1000


@dataclass
class ProviderAttempt:
    provider: str
    success: bool
    latency_ms: int
    request_text: Optional[str] = None
    response_text: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.request_text is not None:
            self.request_text = self.request_text[:REQUEST_TEXT_LIMIT]
        if self.response_text is not None:
            self.response_text = self.response_text[:RESPONSE_TEXT_LIMIT]


class TelemetrySink(Protocol):
    def record_attempt(self, attempt: ProviderAttempt, descriptor) -> None: ...


class InMemoryTelemetrySink:
    def __init__(self):
        self.attempts: List[ProviderAttempt] = []

    def record_attempt(self, attempt: ProviderAttempt, descriptor) -> None:
        self.attempts.append(attempt)


class DatabaseTelemetrySink:
    """Appends provider_call_logs rows and mirrors rolling stats into ai_providers."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record_attempt(self, attempt: ProviderAttempt, descriptor) -> None:
        db = self.session_factory()
        try:
            db.add(
                ProviderCallLog(
                    provider=attempt.provider,
                    success=attempt.success,
                    response_time_ms=attempt.latency_ms,
                    request_text=attempt.request_text,
                    response_text=attempt.response_text,
                    error_message=attempt.error_message,
                    created_at=attempt.created_at,
                )
            )
            row = db.query(AIProvider).filter(AIProvider.name == descriptor.name).first()
            if not row:
                row = AIProvider(name=descriptor.name)
                db.add(row)
            row.total_requests = descriptor.total_requests
            row.success_rate = round(descriptor.success_rate, 2)
            row.avg_response_time = round(descriptor.avg_response_time, 2)
            row.updated_at = attempt.created_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
