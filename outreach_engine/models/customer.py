"""Customer, payment and communication history records."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from outreach_engine.models.common import ContactMethod, ensure_utc, utc_now


class PaymentStatus(str, Enum):
    """Invoice payment states."""
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class ContactStatus(str, Enum):
    """Outcome of a single contact attempt."""
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    ANSWERED = "answered"
    REPLIED = "replied"
    BOUNCED = "bounced"
    FAILED = "failed"


RESPONDED_STATUSES = frozenset({ContactStatus.REPLIED, ContactStatus.ANSWERED})


class Customer(BaseModel):
    """Customer account being collected from."""
    id: str
    company_name: str
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    preferred_contact_method: Optional[ContactMethod] = None
    profile: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("profile", mode="before")
    @classmethod
    def default_profile(cls, v):
        return v or {}

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        return v or []


class PaymentRecord(BaseModel):
    """One invoice and its payment outcome."""
    id: str
    amount: float
    currency: str = "USD"
    due_date: datetime
    paid_date: Optional[datetime] = None
    status: PaymentStatus
    invoice_number: Optional[str] = None
    description: Optional[str] = None

    @field_validator("due_date", "paid_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    def days_late(self) -> Optional[float]:
        """Signed days between due and paid date; None when unpaid."""
        if self.paid_date is None:
            return None
        return (self.paid_date - self.due_date).total_seconds() / 86400

    @property
    def is_late(self) -> bool:
        """Unpaid, or paid after the due date."""
        return self.paid_date is None or self.paid_date > self.due_date


class ContactAttempt(BaseModel):
    """One outreach attempt and how the customer reacted."""
    id: str
    task_id: Optional[str] = None
    agent_id: Optional[str] = None
    channel: ContactMethod
    timestamp: datetime
    status: ContactStatus
    response: Optional[str] = None
    duration: Optional[int] = Field(None, description="Call duration in seconds")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return v or {}

    @property
    def responded(self) -> bool:
        return self.status in RESPONDED_STATUSES
