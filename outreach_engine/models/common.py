"""Shared enums and helpers for the outreach models."""

from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes coming from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Priority(str, Enum):
    """Task and recommendation priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class RiskLevel(str, Enum):
    """Customer risk bands."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ContactMethod(str, Enum):
    """Outreach channels recorded on contact attempts."""
    EMAIL = "email"
    PHONE = "phone"
    SMS = "sms"
