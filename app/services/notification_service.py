"""Outcome events for live listeners, and operator alerts over Telegram."""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("notification_service")

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}

EVENT_MESSAGE_RECEIVED = "message.received"
EVENT_DISPATCH_SENT = "dispatch.sent"
EVENT_DISPATCH_SKIPPED = "dispatch.skipped"
EVENT_PROVIDER_FAILED = "dispatch.provider_failed"
EVENT_SEND_FAILED = "dispatch.send_failed"
EVENT_CONTEXT_FAILED = "dispatch.context_failed"


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the operators' Telegram chat. Returns True if delivered."""
    token = settings.alert_bot_token
    chat_id = settings.alert_chat_id
    if not token or not chat_id:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    text = f"{LEVEL_MARKERS.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        details = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{details}\n```"

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{token}/sendMessage",
                json={"chat_id": chat_id, "text": text, "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)


Listener = Callable[[str, dict], Any]


class EventBus:
    """Fire-and-forget fan-out. Listener errors are logged, never raised."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._pending: set = set()

    def subscribe(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def publish(self, event: str, payload: dict) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(event, payload)
            except Exception as e:
                self._log_failure(event, e)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(lambda t, ev=event: self._finish(ev, t))

    def _finish(self, event: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log_failure(event, task.exception())

    @staticmethod
    def _log_failure(event: str, error: BaseException) -> None:
        logger.error("Event listener failed", extra={"context": {"event": event, "error": str(error)}})

    async def drain(self) -> None:
        """Wait for in-flight async listeners."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def _alert_on_failure(event: str, payload: dict) -> None:
    message = "All AI providers failed" if event == EVENT_PROVIDER_FAILED else "WhatsApp send failed"
    context = {key: payload.get(key) for key in ("conversation_id", "identity_id", "error") if payload.get(key)}
    await asyncio.to_thread(alert_error, message, context)


def register_alert_listeners(bus: EventBus) -> None:
    bus.subscribe(EVENT_PROVIDER_FAILED, _alert_on_failure)
    bus.subscribe(EVENT_SEND_FAILED, _alert_on_failure)
