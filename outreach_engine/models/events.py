"""Coordinator events and the outcome returned by mutating operations."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from outreach_engine.models.common import utc_now


class EventName(str, Enum):
    """Names of events pushed to observers."""
    AGENT_REGISTERED = "agent:registered"
    TASK_QUEUED = "task:queued"
    TASK_ASSIGNED = "task:assigned"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    COORDINATOR_METRICS = "coordinator:metrics"
    COORDINATOR_INITIALIZED = "coordinator:initialized"


class CoordinatorEvent(BaseModel):
    """A named event with a JSON payload."""
    name: EventName
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    def to_message(self) -> Dict[str, Any]:
        """Wire form published on the notification channel."""
        return {
            "event": self.name.value,
            "data": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class OutcomeKind(str, Enum):
    """What a coordinator operation ended up doing."""
    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"
    REGISTERED = "registered"
    INITIALIZED = "initialized"
    METRICS_UPDATED = "metrics_updated"


class CoordinationOutcome(BaseModel):
    """What a coordinator mutation did, plus the events it produced."""
    result: OutcomeKind
    task_id: Optional[str] = None
    agent_id: Optional[str] = None
    reason: Optional[str] = None
    attempts: Optional[int] = None
    events: List[CoordinatorEvent] = Field(default_factory=list)

    @property
    def is_terminal_failure(self) -> bool:
        return self.result == OutcomeKind.FAILED
