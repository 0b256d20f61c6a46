import asyncio
from unittest.mock import AsyncMock

import pytest

from app.schemas.context import HistoryMessage, OrderSummary
from app.schemas.webhook import InboundMessage
from app.services.dispatch_service import (
    DispatchOutcome,
    DispatchPipeline,
    DispatchStatus,
    Dispatcher,
    SendFailedError,
)
from app.services.llm import ProviderAdapter, ProviderConfig, ProviderError, ProviderReply
from app.services.notification_service import EventBus
from app.services.provider_router import ProviderDescriptor, ProviderRouter
from app.services.quota_service import InMemoryQuotaStore, QuotaLimits, QuotaTracker
from app.services.result import Result
from app.services.telemetry_service import InMemoryTelemetrySink

SENDER = "923001234567@c.us"


class ScriptedAdapter(ProviderAdapter):
    def __init__(self, text=None, error=None):
        super().__init__()
        self.text = text
        self.error = error
        self.calls = 0

    async def call(self, message, context, language, config):
        self.calls += 1
        if self.error:
            raise self.error
        return ProviderReply(text=self.text, model="m")


def _router(*adapters):
    descriptors = [
        ProviderDescriptor(
            name=f"p{i}",
            adapter="scripted",
            priority=i,
            config=ProviderConfig(name=f"p{i}", base_url="https://example.invalid", model="m", api_key="k"),
        )
        for i in range(1, len(adapters) + 1)
    ]
    adapters_by_name = {f"p{i}": adapter for i, adapter in enumerate(adapters, start=1)}
    return ProviderRouter(descriptors, adapters_by_name, telemetry=InMemoryTelemetrySink())


class Harness:
    def __init__(self, store, clock, adapters=None, minute_limit=20):
        self.store = store
        self.steps = []
        self.events = []
        self.adapters = adapters or [ScriptedAdapter(text="Basic package Rs. 15000 hai")]

        async def fake_sleep(seconds):
            self.steps.append("pacing")

        async def fake_send(identity_id, destination, text):
            self.steps.append("send")
            return self.send_result

        self.send_result = Result.success("wamid-1")
        self.sender = AsyncMock()
        self.sender.send.side_effect = fake_send
        self.quota = QuotaTracker(
            store=InMemoryQuotaStore(),
            limits=QuotaLimits(minute=minute_limit),
            clock=clock,
            sleep_func=fake_sleep,
        )
        bus = EventBus()
        for name in ("dispatch.sent", "dispatch.skipped", "dispatch.provider_failed", "dispatch.send_failed",
                     "dispatch.context_failed", "message.received"):
            bus.subscribe(name, lambda event, payload: self.events.append(event))
        self.pipeline = DispatchPipeline(
            quota=self.quota,
            router=_router(*self.adapters),
            sender=self.sender,
            store_factory=lambda: store,
            events=bus,
        )


class TestHandleInbound:
    @pytest.mark.asyncio
    async def test_falls_back_and_sends_once(self, fake_store, clock, make_identity):
        fake_store.history = [HistoryMessage(role="customer", text="salam")]
        failing = ScriptedAdapter(error=ProviderError("p1", "quota exhausted"))
        working = ScriptedAdapter(text="Basic package Rs. 15000 hai")
        harness = Harness(fake_store, clock, adapters=[failing, working])
        identity = make_identity()

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="kya price hai"), [identity])

        assert outcome.status == DispatchStatus.SENT
        assert outcome.success is True
        assert outcome.provider_name == "p2"
        assert outcome.stage == "pricing"
        assert outcome.gateway_message_id == "wamid-1"
        assert outcome.language == "roman_urdu"
        harness.sender.send.assert_called_once_with(identity.id, "923001234567", "Basic package Rs. 15000 hai")
        assert fake_store.replies == [("Basic package Rs. 15000 hai", "p2", "pricing")]
        assert fake_store.identity_sends == [identity.id]
        assert fake_store.closed is True
        assert harness.steps == ["pacing", "send"]
        assert harness.events == ["message.received", "dispatch.sent"]

    @pytest.mark.asyncio
    async def test_quota_denied_is_soft_skip(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock, minute_limit=1)
        identity = make_identity()
        harness.quota.record_message(identity.id)

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="hello"), [identity])

        assert outcome.status == DispatchStatus.SKIPPED
        assert outcome.reason == "quota_denied"
        assert harness.adapters[0].calls == 0
        harness.sender.send.assert_not_called()
        assert fake_store.history[-1].text == "hello"

    @pytest.mark.asyncio
    async def test_no_eligible_identity_is_soft_skip(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(
            InboundMessage(sender=SENDER, text="hello"), [make_identity(risk_tier="high")]
        )

        assert outcome.status == DispatchStatus.SKIPPED
        assert outcome.reason == "no_identity"
        harness.sender.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_group_messages_are_ignored(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(
            InboundMessage(sender="120363025@g.us", text="hello all"), [make_identity()]
        )

        assert outcome.status == DispatchStatus.SKIPPED
        assert outcome.reason == "group_chat"
        assert fake_store.history == []

    @pytest.mark.asyncio
    async def test_all_providers_failed_sends_nothing(self, fake_store, clock, make_identity):
        adapters = [ScriptedAdapter(error=ProviderError("p1", "down")), ScriptedAdapter(error=ProviderError("p2", "also down"))]
        harness = Harness(fake_store, clock, adapters=adapters)

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="hello"), [make_identity()])

        assert outcome.status == DispatchStatus.PROVIDER_FAILED
        assert outcome.error == "also down"
        harness.sender.send.assert_not_called()
        assert "pacing" not in harness.steps
        assert harness.events[-1] == "dispatch.provider_failed"

    @pytest.mark.asyncio
    async def test_send_failure_is_raised(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock)
        harness.send_result = Result.failure("Gateway error: 500", "gateway_error")

        with pytest.raises(SendFailedError) as exc_info:
            await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="hello"), [make_identity()])

        assert exc_info.value.outcome.status == DispatchStatus.SEND_FAILED
        assert exc_info.value.outcome.reply_text == "Basic package Rs. 15000 hai"
        assert fake_store.replies == []
        assert fake_store.closed is True
        assert harness.events[-1] == "dispatch.send_failed"

    @pytest.mark.asyncio
    async def test_context_failure_aborts_before_providers(self, fake_store, clock, make_identity):
        fake_store.fail_on = "recent_messages"
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="hello"), [make_identity()])

        assert outcome.status == DispatchStatus.CONTEXT_FAILED
        assert "recent_messages failed" in outcome.error
        assert harness.adapters[0].calls == 0

    @pytest.mark.asyncio
    async def test_ingest_failure_is_context_failure(self, fake_store, clock, make_identity):
        fake_store.fail_on = "open_conversation"
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="hello"), [make_identity()])

        assert outcome.status == DispatchStatus.CONTEXT_FAILED
        assert fake_store.closed is True

    @pytest.mark.asyncio
    async def test_post_sale_customer_ignores_price_keywords(self, fake_store, clock, make_identity):
        fake_store.orders = [OrderSummary(status="in_progress")]
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(InboundMessage(sender=SENDER, text="price kya hai"), [make_identity()])

        assert outcome.stage == "post_sale"

    @pytest.mark.asyncio
    async def test_receiving_identity_is_preferred(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock)
        idle = make_identity(messages_sent_today=0)
        receiving = make_identity(messages_sent_today=40)

        outcome = await harness.pipeline.handle_inbound(
            InboundMessage(sender=SENDER, text="hello", identity_id=receiving.id), [idle, receiving]
        )

        assert outcome.identity_id == str(receiving.id)

    @pytest.mark.asyncio
    async def test_detected_language_updates_customer(self, fake_store, clock, make_identity):
        harness = Harness(fake_store, clock)

        outcome = await harness.pipeline.handle_inbound(
            InboundMessage(sender=SENDER, text="Hello, I need a website"), [make_identity()]
        )

        assert outcome.language == "english"
        assert fake_store.customer.language == "english"


class RecordingPipeline:
    def __init__(self, delays=None, fail_texts=()):
        self.delays = delays or {}
        self.fail_texts = set(fail_texts)
        self.processed = []

    async def handle_inbound(self, message, identity_pool):
        await asyncio.sleep(self.delays.get(message.text, 0))
        if message.text in self.fail_texts:
            raise RuntimeError("pipeline blew up")
        if message.text == "send-fail":
            raise SendFailedError(DispatchOutcome(status=DispatchStatus.SEND_FAILED, error="gateway down"))
        self.processed.append((message.sender, message.text))
        return DispatchOutcome(status=DispatchStatus.SENT)


async def _pool():
    return []


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_keeps_arrival_order_within_conversation(self):
        pipeline = RecordingPipeline(delays={"first": 0.05, "second": 0.0})
        dispatcher = Dispatcher(pipeline, _pool)

        await dispatcher.submit(InboundMessage(sender="a@c.us", text="first"))
        await dispatcher.submit(InboundMessage(sender="a@c.us", text="second"))
        await dispatcher.join()

        assert pipeline.processed == [("a@c.us", "first"), ("a@c.us", "second")]

    @pytest.mark.asyncio
    async def test_conversations_run_concurrently(self):
        pipeline = RecordingPipeline(delays={"slow": 0.1, "fast": 0.0})
        dispatcher = Dispatcher(pipeline, _pool)

        await dispatcher.submit(InboundMessage(sender="a@c.us", text="slow"))
        await dispatcher.submit(InboundMessage(sender="b@c.us", text="fast"))
        assert dispatcher.active_conversations == 2
        await dispatcher.join()

        assert pipeline.processed == [("b@c.us", "fast"), ("a@c.us", "slow")]
        assert dispatcher.active_conversations == 0

    @pytest.mark.asyncio
    async def test_worker_survives_pipeline_errors(self):
        pipeline = RecordingPipeline(fail_texts={"boom"})
        dispatcher = Dispatcher(pipeline, _pool)

        await dispatcher.submit(InboundMessage(sender="a@c.us", text="boom"))
        await dispatcher.submit(InboundMessage(sender="a@c.us", text="send-fail"))
        await dispatcher.submit(InboundMessage(sender="a@c.us", text="after"))
        await dispatcher.join()

        assert pipeline.processed == [("a@c.us", "after")]
        assert [o.status for o in dispatcher.outcomes] == [DispatchStatus.SEND_FAILED, DispatchStatus.SENT]

    @pytest.mark.asyncio
    async def test_stop_cancels_workers(self):
        pipeline = RecordingPipeline(delays={"stuck": 10})
        dispatcher = Dispatcher(pipeline, _pool)

        await dispatcher.submit(InboundMessage(sender="a@c.us", text="stuck"))
        await dispatcher.stop()

        assert dispatcher.active_conversations == 0
        assert pipeline.processed == []
