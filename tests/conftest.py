from types import SimpleNamespace
from unittest.mock import Mock
from uuid import uuid4

import pytest

from app.schemas.context import CustomerProfile, HistoryMessage
from app.services.context_service import ConversationHandle


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("CLAUDE_API_KEY", "test-key")
    monkeypatch.setenv("GROQ_API_KEY", "test-key")
    monkeypatch.setenv("QUOTA_STORE", "memory")


class FakeClock:
    """Manually advanced time source, in seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_identity():
    def _make(**overrides):
        values = {
            "id": uuid4(),
            "status": "ready",
            "messages_sent_today": 0,
            "daily_limit": 1000,
            "risk_tier": "low",
        }
        values.update(overrides)
        return SimpleNamespace(**values)

    return _make


class FakeConversationStore:
    """In-memory ConversationStore for pipeline tests."""

    def __init__(self, history=None, orders=None, packages=None, language="roman_urdu"):
        self.customer = CustomerProfile(id=uuid4(), name="Ali", phone="923001234567", language=language)
        self.conversation_id = uuid4()
        self.history = list(history or [])
        self.orders = list(orders or [])
        self.packages = list(packages or [])
        self.replies = []
        self.identity_sends = []
        self.commits = 0
        self.closed = False
        self.fail_on = None

    def _maybe_fail(self, step):
        if self.fail_on == step:
            raise RuntimeError(f"{step} failed")

    async def open_conversation(self, phone, name, identity_id):
        self._maybe_fail("open_conversation")
        return ConversationHandle(conversation_id=self.conversation_id, customer=self.customer.model_copy())

    async def save_inbound(self, conversation_id, text, language):
        self.history.append(HistoryMessage(role="customer", text=text))

    async def update_language(self, customer_id, language):
        changed = self.customer.language != language
        self.customer.language = language
        return changed

    async def message_count(self, conversation_id):
        return len(self.history)

    async def recent_messages(self, conversation_id, limit):
        self._maybe_fail("recent_messages")
        return self.history[-limit:]

    async def customer_orders(self, customer_id, limit):
        return self.orders[:limit]

    async def active_packages(self):
        return self.packages

    async def save_reply(self, conversation_id, text, provider_name, stage):
        self.replies.append((text, provider_name, stage))
        self.history.append(HistoryMessage(role="assistant", text=text))

    async def record_identity_send(self, identity_id):
        self.identity_sends.append(identity_id)

    async def commit(self):
        self.commits += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_store():
    return FakeConversationStore()
