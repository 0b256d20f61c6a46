import os

from fastapi import FastAPI, Request

from app.config import settings
from app.database import SessionLocal
from app.logging_config import get_logger, setup_logging
from app.routers import webhook
from app.services.context_service import SqlConversationStore
from app.services.dispatch_service import DispatchPipeline, Dispatcher
from app.services.identity_service import load_identity_pool
from app.services.notification_service import EventBus, register_alert_listeners
from app.services.provider_router import build_provider_router
from app.services.quota_service import QuotaLimits, QuotaTracker, build_quota_store
from app.services.telemetry_service import DatabaseTelemetrySink
from app.services.whatsapp_service import WhatsAppGatewaySender

setup_logging(settings.log_level)

app = FastAPI(
    title="SalesFlow Dispatch",
    description="Automated WhatsApp sales replies with provider fallback",
    version="0.1.0",
)

app.include_router(webhook.router)

logger = get_logger("main")


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_dispatcher_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.dispatcher_enabled and _is_env_enabled(os.environ.get("DISPATCHER_ENABLED"), default=True)


async def _load_identity_pool() -> list:
    db = SessionLocal()
    try:
        return load_identity_pool(db)
    finally:
        db.close()


def build_dispatcher() -> Dispatcher:
    events = EventBus()
    register_alert_listeners(events)
    pipeline = DispatchPipeline(
        quota=QuotaTracker(store=build_quota_store(), limits=QuotaLimits.from_settings()),
        router=build_provider_router(telemetry=DatabaseTelemetrySink(SessionLocal)),
        sender=WhatsAppGatewaySender(),
        store_factory=lambda: SqlConversationStore(SessionLocal()),
        events=events,
    )
    return Dispatcher(pipeline, _load_identity_pool, queue_size=settings.dispatcher_queue_size)


@app.on_event("startup")
async def start_dispatcher() -> None:
    if not _is_dispatcher_enabled():
        return
    if getattr(app.state, "dispatcher", None) is None:
        app.state.dispatcher = build_dispatcher()
        logger.info("Dispatcher started")


@app.on_event("shutdown")
async def stop_dispatcher() -> None:
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is None:
        return
    await dispatcher.stop()
    await dispatcher.pipeline.events.drain()
    app.state.dispatcher = None


@app.get("/health")
async def health(request: Request):
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "ok",
        "dispatcher": dispatcher is not None,
        "active_conversations": dispatcher.active_conversations if dispatcher else 0,
    }


@app.get("/status")
async def status(request: Request):
    """Provider and quota state of the running dispatcher."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return {"dispatcher": False, "providers": [], "quotas": {}}
    pipeline = dispatcher.pipeline
    return {
        "dispatcher": True,
        "providers": pipeline.router.get_provider_status(),
        "quotas": pipeline.quota.get_all_status(),
    }
