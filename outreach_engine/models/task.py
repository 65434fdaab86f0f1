"""Task models and lifecycle rules."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from outreach_engine.core.exceptions import InvalidTaskTransitionError
from outreach_engine.models.agent import AgentType
from outreach_engine.models.common import Priority, utc_now


class TaskType(str, Enum):
    """Closed set of outreach task kinds."""
    SEND_EMAIL = "send_email"
    MAKE_CALL = "make_call"
    SEND_SMS = "send_sms"
    RESEARCH_CUSTOMER = "research_customer"
    ESCALATE = "escalate"
    FOLLOW_UP = "follow_up"


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DispatchChannel(str, Enum):
    """Executor queues a task can be handed to."""
    EMAIL = "email"
    PHONE = "phone"
    SMS = "sms"
    RESEARCH = "research"
    NOTIFICATIONS = "notifications"


# Agent type required per task kind; None means any agent type may take it.
TASK_AGENT_TYPES: Dict[TaskType, Optional[AgentType]] = {
    TaskType.SEND_EMAIL: AgentType.EMAIL,
    TaskType.MAKE_CALL: AgentType.PHONE,
    TaskType.SEND_SMS: AgentType.SMS,
    TaskType.RESEARCH_CUSTOMER: AgentType.RESEARCH,
    TaskType.ESCALATE: None,
    TaskType.FOLLOW_UP: None,
}

TASK_DISPATCH_CHANNELS: Dict[TaskType, DispatchChannel] = {
    TaskType.SEND_EMAIL: DispatchChannel.EMAIL,
    TaskType.MAKE_CALL: DispatchChannel.PHONE,
    TaskType.SEND_SMS: DispatchChannel.SMS,
    TaskType.RESEARCH_CUSTOMER: DispatchChannel.RESEARCH,
    TaskType.ESCALATE: DispatchChannel.NOTIFICATIONS,
    TaskType.FOLLOW_UP: DispatchChannel.NOTIFICATIONS,
}

for _table in (TASK_AGENT_TYPES, TASK_DISPATCH_CHANNELS):
    _missing = set(TaskType) - set(_table)
    if _missing:
        raise RuntimeError(f"Task routing table missing kinds: {sorted(m.value for m in _missing)}")


ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ASSIGNED}),
    TaskStatus.ASSIGNED: frozenset({
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.PENDING,
        TaskStatus.FAILED,
    }),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.COMPLETED,
        TaskStatus.PENDING,
        TaskStatus.FAILED,
    }),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

IN_FLIGHT_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})


def agent_can_handle(agent_type: AgentType, task_type: TaskType) -> bool:
    """Type-capability match between an agent and a task kind."""
    required = TASK_AGENT_TYPES[task_type]
    return required is None or required == agent_type


class TaskSubmission(BaseModel):
    """Inbound task submitted by an upstream component."""
    customer_id: str = Field(..., min_length=1, description="Customer identifier")
    campaign_id: Optional[str] = Field(None, description="Campaign identifier")
    type: TaskType = Field(..., description="Task kind")
    priority: Priority = Field(Priority.MEDIUM, description="Task priority")
    context: Dict[str, Any] = Field(default_factory=dict, description="Execution payload")
    due_at: Optional[datetime] = Field(None, description="When the outreach is due")
    max_attempts: int = Field(3, ge=1, le=10, description="Execution attempts before terminal failure")


class Task(BaseModel):
    """A unit of outreach work."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: TaskType
    priority: Priority = Priority.MEDIUM
    customer_id: str
    campaign_id: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    due_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    last_error: Optional[str] = None

    @model_validator(mode="after")
    def check_attempts(self) -> "Task":
        if self.attempts > self.max_attempts:
            raise ValueError("attempts cannot exceed max_attempts")
        return self

    @classmethod
    def from_submission(cls, submission: TaskSubmission) -> "Task":
        return cls(
            type=submission.type,
            priority=submission.priority,
            customer_id=submission.customer_id,
            campaign_id=submission.campaign_id,
            context=dict(submission.context),
            due_at=submission.due_at,
            max_attempts=submission.max_attempts,
        )

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    @property
    def will_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def transition_to(self, status: TaskStatus, when: Optional[datetime] = None) -> None:
        """Move to ``status`` or raise if the lifecycle forbids it."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTaskTransitionError(self.id, self.status.value, status.value)
        self.status = status
        self.updated_at = when or utc_now()

    def is_ready(self, now: datetime) -> bool:
        """Retry backoff gate."""
        return self.next_attempt_at is None or self.next_attempt_at <= now
