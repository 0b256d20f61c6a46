"""Per-identity send quotas: minute/hour/day windows plus burst cooldown."""

import asyncio
import json
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

import redis

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("quota_service")

QUOTA_KEY_PREFIX = "salesflow:quota"
WINDOW_NAMES = ("minute", "hour", "day")


@dataclass
class QuotaLimits:
    minute: int = 20
    hour: int = 200
    day: int = 1000
    minute_window: float = 60
    hour_window: float = 3600
    day_window: float = 86400
    cooldown_seconds: float = 60
    warning_ratio: float = 0.8
    delay_min: float = 1.0
    delay_max: float = 3.0

    @classmethod
    def from_settings(cls) -> "QuotaLimits":
        return cls(
            minute=settings.quota_minute_limit,
            hour=settings.quota_hour_limit,
            day=settings.quota_day_limit,
            minute_window=settings.quota_minute_window_seconds,
            hour_window=settings.quota_hour_window_seconds,
            day_window=settings.quota_day_window_seconds,
            cooldown_seconds=settings.quota_cooldown_seconds,
            warning_ratio=settings.quota_warning_ratio,
            delay_min=settings.pacing_delay_min_seconds,
            delay_max=settings.pacing_delay_max_seconds,
        )

    def limit_for(self, window: str) -> int:
        return getattr(self, window)

    def length_for(self, window: str) -> float:
        return getattr(self, f"{window}_window")


@dataclass
class WindowCounter:
    count: int = 0
    window_start: float = 0.0


@dataclass
class QuotaState:
    minute: WindowCounter = field(default_factory=WindowCounter)
    hour: WindowCounter = field(default_factory=WindowCounter)
    day: WindowCounter = field(default_factory=WindowCounter)
    in_cooldown: bool = False
    cooldown_until: Optional[float] = None
    last_message_at: Optional[float] = None

    @classmethod
    def fresh(cls, now: float) -> "QuotaState":
        return cls(
            minute=WindowCounter(window_start=now),
            hour=WindowCounter(window_start=now),
            day=WindowCounter(window_start=now),
        )

    def counter(self, window: str) -> WindowCounter:
        return getattr(self, window)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "QuotaState":
        return cls(
            minute=WindowCounter(**data["minute"]),
            hour=WindowCounter(**data["hour"]),
            day=WindowCounter(**data["day"]),
            in_cooldown=bool(data.get("in_cooldown")),
            cooldown_until=data.get("cooldown_until"),
            last_message_at=data.get("last_message_at"),
        )


class QuotaStore(Protocol):
    def load(self, identity_id: str) -> Optional[QuotaState]: ...

    def save(self, identity_id: str, state: QuotaState) -> None: ...

    def delete(self, identity_id: str) -> None: ...

    def identities(self) -> List[str]: ...


class InMemoryQuotaStore:
    """Process-local store. Not shared between dispatcher instances."""

    def __init__(self):
        self._states: Dict[str, QuotaState] = {}

    def load(self, identity_id: str) -> Optional[QuotaState]:
        return self._states.get(identity_id)

    def save(self, identity_id: str, state: QuotaState) -> None:
        self._states[identity_id] = state

    def delete(self, identity_id: str) -> None:
        self._states.pop(identity_id, None)

    def identities(self) -> List[str]:
        return list(self._states)


class RedisQuotaStore:
    """Stores each identity's quota state as one JSON value."""

    def __init__(self, client: "redis.Redis", prefix: str = QUOTA_KEY_PREFIX):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisQuotaStore":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)
        return cls(client)

    def _key(self, identity_id: str) -> str:
        return f"{self.prefix}:{identity_id}"

    def load(self, identity_id: str) -> Optional[QuotaState]:
        payload = self.client.get(self._key(identity_id))
        if not payload:
            return None
        return QuotaState.from_dict(json.loads(payload))

    def save(self, identity_id: str, state: QuotaState) -> None:
        self.client.set(self._key(identity_id), json.dumps(state.to_dict()))

    def delete(self, identity_id: str) -> None:
        self.client.delete(self._key(identity_id))

    def identities(self) -> List[str]:
        start = len(self.prefix) + 1
        return [key[start:] for key in self.client.scan_iter(match=f"{self.prefix}:*")]


def build_quota_store() -> QuotaStore:
    if settings.quota_store == "redis":
        logger.info("Using redis quota store", extra={"context": {"redis_url": settings.redis_url}})
        return RedisQuotaStore.from_url(settings.redis_url)
    return InMemoryQuotaStore()


class QuotaTracker:
    def __init__(
        self,
        store: Optional[QuotaStore] = None,
        limits: Optional[QuotaLimits] = None,
        clock: Callable[[], float] = time.time,
        sleep_func=asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.store = store if store is not None else InMemoryQuotaStore()
        self.limits = limits or QuotaLimits()
        self.clock = clock
        self.sleep_func = sleep_func
        self.rng = rng or random.Random()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _state(self, identity_id: str, now: float) -> QuotaState:
        state = self.store.load(identity_id)
        if state is None:
            state = QuotaState.fresh(now)
            self.store.save(identity_id, state)
        return state

    def _reset_expired_windows(self, state: QuotaState, now: float) -> None:
        for window in WINDOW_NAMES:
            counter = state.counter(window)
            if now - counter.window_start >= self.limits.length_for(window):
                counter.count = 0
                counter.window_start = now

    def _enter_cooldown(self, identity_id: str, state: QuotaState, now: float) -> None:
        state.in_cooldown = True
        state.cooldown_until = now + self.limits.cooldown_seconds
        logger.warning(
            "Identity entered cooldown",
            extra={"context": {"identity_id": identity_id, "cooldown_seconds": self.limits.cooldown_seconds}},
        )

    def check_limit(self, identity_id) -> bool:
        """Return True when the identity may send right now.

        Resets expired windows and clears a finished cooldown as a side effect.
        Only a minute-window breach puts the identity into cooldown.
        """
        key = str(identity_id)
        now = self.clock()
        state = self._state(key, now)
        self._reset_expired_windows(state, now)

        if state.in_cooldown:
            if state.cooldown_until is not None and now < state.cooldown_until:
                self.store.save(key, state)
                logger.info(
                    "Identity in cooldown",
                    extra={"context": {"identity_id": key, "remaining": round(state.cooldown_until - now, 3)}},
                )
                return False
            state.in_cooldown = False
            state.cooldown_until = None

        for window in WINDOW_NAMES:
            limit = self.limits.limit_for(window)
            if state.counter(window).count >= limit:
                if window == "minute":
                    self._enter_cooldown(key, state, now)
                self.store.save(key, state)
                logger.info(
                    f"Quota exceeded: {window}",
                    extra={"context": {"identity_id": key, "count": state.counter(window).count, "limit": limit}},
                )
                return False

        minute_count = state.minute.count
        if minute_count >= self.limits.minute * self.limits.warning_ratio:
            logger.warning(
                "Approaching minute quota",
                extra={"context": {"identity_id": key, "count": minute_count, "limit": self.limits.minute}},
            )

        self.store.save(key, state)
        return True

    def record_message(self, identity_id) -> None:
        key = str(identity_id)
        now = self.clock()
        state = self._state(key, now)
        self._reset_expired_windows(state, now)
        for window in WINDOW_NAMES:
            state.counter(window).count += 1
        state.last_message_at = now
        self.store.save(key, state)

    async def check_and_record(self, identity_id) -> bool:
        """Check and count one send while holding the identity's lock."""
        key = str(identity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if not self.check_limit(key):
                return False
            self.record_message(key)
            return True

    async def add_pacing_delay(self) -> float:
        delay = self.rng.uniform(self.limits.delay_min, self.limits.delay_max)
        await self.sleep_func(delay)
        return delay

    def get_status(self, identity_id) -> dict:
        key = str(identity_id)
        now = self.clock()
        state = self._state(key, now)
        self._reset_expired_windows(state, now)
        self.store.save(key, state)
        status = {}
        for window in WINDOW_NAMES:
            counter = state.counter(window)
            limit = self.limits.limit_for(window)
            length = self.limits.length_for(window)
            status[window] = {
                "count": counter.count,
                "limit": limit,
                "remaining": max(0, limit - counter.count),
                "reset_in": max(0.0, length - (now - counter.window_start)),
            }
        status["in_cooldown"] = state.in_cooldown
        status["cooldown_until"] = state.cooldown_until
        status["last_message_at"] = state.last_message_at
        return status

    def reset_limits(self, identity_id) -> None:
        key = str(identity_id)
        self.store.delete(key)
        logger.info("Quota reset", extra={"context": {"identity_id": key}})

    def get_all_status(self) -> dict:
        return {identity_id: self.get_status(identity_id) for identity_id in self.store.identities()}
