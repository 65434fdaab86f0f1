"""Request and response schemas for the HTTP API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from outreach_engine.models.events import CoordinationOutcome, OutcomeKind


class TaskCompletionRequest(BaseModel):
    """Executor report that a task finished."""
    result: Dict[str, Any] = Field(default_factory=dict, description="Executor result payload")


class TaskFailureRequest(BaseModel):
    """Executor report that a task failed."""
    error: str = Field(..., min_length=1, max_length=2000, description="Failure reason")


class OutcomeResponse(BaseModel):
    """Result of a coordinator operation."""
    result: OutcomeKind
    task_id: Optional[str] = None
    agent_id: Optional[str] = None
    reason: Optional[str] = None
    attempts: Optional[int] = None
    events: List[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: CoordinationOutcome) -> "OutcomeResponse":
        return cls(
            result=outcome.result,
            task_id=outcome.task_id,
            agent_id=outcome.agent_id,
            reason=outcome.reason,
            attempts=outcome.attempts,
            events=[event.name.value for event in outcome.events],
        )


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str


class DependencyHealthResponse(BaseModel):
    """Dependencies health check response model."""
    persistence: bool
    cache: bool
    executors: Dict[str, Dict[str, Any]]
    overall_status: str
