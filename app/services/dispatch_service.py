"""Inbound message dispatch: quota, context, provider routing, pacing, send.

``DispatchPipeline`` handles one message end to end. ``Dispatcher`` feeds it
from one FIFO queue per conversation so replies within a conversation keep
arrival order while different conversations run concurrently.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from app.logging_config import LoggerAdapter, get_logger
from app.schemas.webhook import InboundMessage
from app.services.context_service import ConversationStore, build_context
from app.services.identity_service import is_eligible, select_for_send
from app.services.language_service import detect_language
from app.services.notification_service import (
    EVENT_CONTEXT_FAILED,
    EVENT_DISPATCH_SENT,
    EVENT_DISPATCH_SKIPPED,
    EVENT_MESSAGE_RECEIVED,
    EVENT_PROVIDER_FAILED,
    EVENT_SEND_FAILED,
    EventBus,
)
from app.services.provider_router import AllProvidersFailedError, ProviderRouter
from app.services.quota_service import QuotaTracker
from app.services.whatsapp_service import from_chat_id, is_group_chat

logger = get_logger("dispatch_service")


class DispatchStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    CONTEXT_FAILED = "context_failed"
    PROVIDER_FAILED = "provider_failed"
    SEND_FAILED = "send_failed"


@dataclass
class DispatchOutcome:
    status: DispatchStatus
    identity_id: Optional[str] = None
    conversation_id: Optional[str] = None
    provider_name: Optional[str] = None
    reply_text: Optional[str] = None
    latency_ms: Optional[int] = None
    stage: Optional[str] = None
    language: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    gateway_message_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == DispatchStatus.SENT

    def to_event(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["success"] = self.success
        return payload


class SendFailedError(Exception):
    """The send collaborator rejected a generated reply."""

    def __init__(self, outcome: DispatchOutcome):
        super().__init__(outcome.error or "send failed")
        self.outcome = outcome


_OUTCOME_EVENTS = {
    DispatchStatus.SENT: EVENT_DISPATCH_SENT,
    DispatchStatus.SKIPPED: EVENT_DISPATCH_SKIPPED,
    DispatchStatus.CONTEXT_FAILED: EVENT_CONTEXT_FAILED,
    DispatchStatus.PROVIDER_FAILED: EVENT_PROVIDER_FAILED,
    DispatchStatus.SEND_FAILED: EVENT_SEND_FAILED,
}


class DispatchPipeline:
    def __init__(
        self,
        quota: QuotaTracker,
        router: ProviderRouter,
        sender,
        store_factory: Callable[[], ConversationStore],
        events: Optional[EventBus] = None,
    ):
        self.quota = quota
        self.router = router
        self.sender = sender
        self.store_factory = store_factory
        self.events = events or EventBus()

    def _pick_identity(self, message: InboundMessage, identity_pool: List):
        if message.identity_id is not None:
            for identity in identity_pool:
                if str(identity.id) == str(message.identity_id) and is_eligible(identity):
                    return identity
        return select_for_send(identity_pool)

    def _emit(self, outcome: DispatchOutcome) -> DispatchOutcome:
        self.events.publish(_OUTCOME_EVENTS[outcome.status], outcome.to_event())
        return outcome

    async def handle_inbound(self, message: InboundMessage, identity_pool: List) -> DispatchOutcome:
        """Process one inbound message.

        Returns a SKIPPED outcome for group chats, missing identities and
        denied quota. Raises SendFailedError when the reply could not be sent.
        """
        if is_group_chat(message.sender):
            return DispatchOutcome(status=DispatchStatus.SKIPPED, reason="group_chat")

        language = detect_language(message.text).value
        phone = from_chat_id(message.sender)
        log = LoggerAdapter(logger, {"sender": phone})

        store = self.store_factory()
        try:
            return await self._dispatch(store, message, identity_pool, phone, language, log)
        finally:
            await store.close()

    async def _dispatch(self, store, message, identity_pool, phone, language, log) -> DispatchOutcome:
        identity = self._pick_identity(message, identity_pool)
        identity_id = str(identity.id) if identity is not None else None

        try:
            handle = await store.open_conversation(phone, message.sender_name, identity.id if identity else None)
            await store.save_inbound(handle.conversation_id, message.text, language)
            if await store.update_language(handle.customer.id, language):
                handle.customer.language = language
            await store.commit()
        except Exception as e:
            log.error("Failed to ingest inbound message", context={"error": str(e)})
            return self._emit(
                DispatchOutcome(
                    status=DispatchStatus.CONTEXT_FAILED, identity_id=identity_id, language=language, error=str(e)
                )
            )

        conversation_id = str(handle.conversation_id)
        log = LoggerAdapter(logger, {"sender": phone, "conversation_id": conversation_id, "identity_id": identity_id})
        self.events.publish(
            EVENT_MESSAGE_RECEIVED,
            {"conversation_id": conversation_id, "text": message.text, "language": language},
        )

        if identity is None:
            log.info("Dispatch skipped: no eligible identity")
            return self._emit(
                DispatchOutcome(
                    status=DispatchStatus.SKIPPED,
                    conversation_id=conversation_id,
                    language=language,
                    reason="no_identity",
                )
            )

        if not await self.quota.check_and_record(identity.id):
            log.info("Dispatch skipped: quota denied")
            return self._emit(
                DispatchOutcome(
                    status=DispatchStatus.SKIPPED,
                    identity_id=identity_id,
                    conversation_id=conversation_id,
                    language=language,
                    reason="quota_denied",
                )
            )

        try:
            context = await build_context(store, handle, message.text, language)
        except Exception as e:
            log.error("Failed to build conversation context", context={"error": str(e)})
            return self._emit(
                DispatchOutcome(
                    status=DispatchStatus.CONTEXT_FAILED,
                    identity_id=identity_id,
                    conversation_id=conversation_id,
                    language=language,
                    error=str(e),
                )
            )

        try:
            reply = await self.router.get_response(message.text, context, language)
        except AllProvidersFailedError as e:
            log.error("No reply generated: all providers failed", context={"error": e.last_error})
            return self._emit(
                DispatchOutcome(
                    status=DispatchStatus.PROVIDER_FAILED,
                    identity_id=identity_id,
                    conversation_id=conversation_id,
                    stage=context.stage.value,
                    language=language,
                    error=e.last_error or str(e),
                )
            )

        await self.quota.add_pacing_delay()

        outcome = DispatchOutcome(
            status=DispatchStatus.SENT,
            identity_id=identity_id,
            conversation_id=conversation_id,
            provider_name=reply.provider_name,
            reply_text=reply.text,
            latency_ms=reply.latency_ms,
            stage=context.stage.value,
            language=language,
        )

        result = await self.sender.send(identity.id, phone, reply.text)
        if not result.ok:
            outcome.status = DispatchStatus.SEND_FAILED
            outcome.error = result.error
            log.error("Reply send failed", context={"error": result.error, "code": result.error_code})
            self._emit(outcome)
            raise SendFailedError(outcome)

        outcome.gateway_message_id = result.unwrap_or(None)
        await store.save_reply(handle.conversation_id, reply.text, reply.provider_name, context.stage.value)
        await store.record_identity_send(identity.id)
        await store.commit()
        log.info(
            "Reply sent",
            context={"provider": reply.provider_name, "stage": context.stage.value, "latency_ms": reply.latency_ms},
        )
        return self._emit(outcome)


class Dispatcher:
    """Per-conversation FIFO queues, each drained by its own worker task."""

    def __init__(
        self,
        pipeline: DispatchPipeline,
        pool_loader: Callable[[], Awaitable[List]],
        queue_size: int = 100,
    ):
        self.pipeline = pipeline
        self.pool_loader = pool_loader
        self.queue_size = queue_size
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self.outcomes: List[DispatchOutcome] = []

    @property
    def active_conversations(self) -> int:
        return len(self._workers)

    async def submit(self, message: InboundMessage) -> None:
        key = message.conversation_key
        queue = self._queues.get(key)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._queues[key] = queue
            self._workers[key] = asyncio.create_task(self._worker(key, queue))
        await queue.put(message)

    async def _worker(self, key: str, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            started = time.perf_counter()
            try:
                pool = await self.pool_loader()
                outcome = await self.pipeline.handle_inbound(message, pool)
                self._remember(outcome)
            except SendFailedError as e:
                self._remember(e.outcome)
                logger.error("Dispatch failed at send", extra={"context": {"conversation": key, "error": str(e)}})
            except Exception as e:
                logger.exception("Dispatch crashed", extra={"context": {"conversation": key, "error": str(e)}})
            finally:
                queue.task_done()
                logger.debug(
                    "Message processed",
                    extra={"context": {"conversation": key, "ms": int((time.perf_counter() - started) * 1000)}},
                )

            if queue.empty():
                # no await between the empty check and removal
                self._queues.pop(key, None)
                self._workers.pop(key, None)
                return

    def _remember(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)
        if len(self.outcomes) > 1000:
            del self.outcomes[:-1000]

    async def join(self) -> None:
        """Wait until every queued message has been processed."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._workers.values()):
            task.cancel()
        for task in list(self._workers.values()):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        self._queues.clear()
