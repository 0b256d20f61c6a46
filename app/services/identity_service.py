from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import SendingIdentity

logger = get_logger("identity_service")


class IdentityStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    READY = "ready"


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SENDABLE_STATUSES = {IdentityStatus.AUTHENTICATED.value, IdentityStatus.READY.value}


def _value(raw) -> str:
    return raw.value if isinstance(raw, Enum) else str(raw or "")


def is_eligible(identity) -> bool:
    """Connected, under its daily limit and not high risk."""
    if _value(identity.status) not in SENDABLE_STATUSES:
        return False
    if (identity.messages_sent_today or 0) >= (identity.daily_limit or 0):
        return False
    return _value(identity.risk_tier) != RiskTier.HIGH.value


def select_for_send(pool: Iterable) -> Optional[object]:
    """Pick the least-used eligible identity; ties keep pool order.

    None means "do not send now", not an error.
    """
    eligible = [identity for identity in pool if is_eligible(identity)]
    if not eligible:
        logger.info("No eligible sending identity")
        return None
    # min() returns the first of equal keys, preserving pool order on ties
    return min(eligible, key=lambda identity: identity.messages_sent_today or 0)


def get_identity_limits(identity) -> dict:
    sent = identity.messages_sent_today or 0
    limit = identity.daily_limit or 0
    return {
        "within_daily_limit": sent < limit,
        "remaining": max(0, limit - sent),
        "utilization_percent": round(sent / limit * 100, 2) if limit else 100.0,
    }


def load_identity_pool(db: Session) -> List[SendingIdentity]:
    """Primary identity first, then registration order."""
    return (
        db.query(SendingIdentity)
        .order_by(SendingIdentity.is_primary.desc(), SendingIdentity.created_at.asc())
        .all()
    )


def get_identity_by_phone(db: Session, phone_number: str) -> Optional[SendingIdentity]:
    return db.query(SendingIdentity).filter(SendingIdentity.phone_number == phone_number).first()


def record_identity_send(db: Session, identity: SendingIdentity) -> None:
    identity.messages_sent_today = (identity.messages_sent_today or 0) + 1
    db.flush()


def update_identity_status(db: Session, identity: SendingIdentity, status: IdentityStatus) -> None:
    previous = identity.status
    identity.status = status.value
    identity.last_status_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "Identity status changed",
        extra={"context": {"identity_id": str(identity.id), "from": previous, "to": status.value}},
    )


def update_risk_tier(db: Session, identity: SendingIdentity, tier: RiskTier) -> None:
    identity.risk_tier = tier.value
    db.flush()
    if tier == RiskTier.HIGH:
        logger.warning("Identity marked high risk", extra={"context": {"identity_id": str(identity.id)}})
