"""Agent models for the task coordination engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from outreach_engine.models.common import utc_now


class AgentType(str, Enum):
    """Outreach channel an agent works on."""
    EMAIL = "email"
    PHONE = "phone"
    SMS = "sms"
    RESEARCH = "research"


class AgentStatus(str, Enum):
    """Agent availability states."""
    IDLE = "idle"
    ACTIVE = "active"
    BUSY = "busy"
    ERROR = "error"
    OFFLINE = "offline"


class WorkingHours(BaseModel):
    """Daily working window in HH:MM."""
    start: str = "09:00"
    end: str = "17:00"


class PerformanceMetrics(BaseModel):
    """Running performance counters for an agent."""
    tasks_completed: int = 0
    tasks_successful: int = 0
    average_response_time: float = Field(0.0, description="Milliseconds; 0 means no samples yet")
    customer_satisfaction_score: float = 0.0
    escalation_rate: float = 0.0
    last_updated: datetime = Field(default_factory=utc_now)


class AgentConfig(BaseModel):
    """Static agent configuration."""
    max_concurrent_tasks: int = Field(..., ge=1)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    timezone: str = "UTC"
    skills: List[str] = Field(default_factory=list)
    templates: Dict[str, str] = Field(default_factory=dict)
    integrations: List[Dict[str, Any]] = Field(default_factory=list)


class AgentRegistration(BaseModel):
    """Request to register a new outreach agent."""
    type: AgentType = Field(..., description="Channel the agent works on")
    capabilities: List[str] = Field(default_factory=list, description="Skill tags")
    max_concurrent_tasks: int = Field(..., ge=1, description="Concurrent task limit")
    working_hours: Optional[WorkingHours] = Field(None, description="Daily working window")
    timezone: Optional[str] = Field(None, description="IANA timezone of the working window")

    @field_validator("capabilities")
    @classmethod
    def dedupe_capabilities(cls, v: List[str]) -> List[str]:
        seen = []
        for tag in v:
            if tag not in seen:
                seen.append(tag)
        return seen


class Agent(BaseModel):
    """A registered outreach worker."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: AgentType
    status: AgentStatus = AgentStatus.IDLE
    capabilities: List[str] = Field(default_factory=list)
    current_tasks: List[str] = Field(default_factory=list, description="Ids of tasks held by the agent")
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    config: AgentConfig

    @classmethod
    def from_registration(cls, registration: AgentRegistration) -> "Agent":
        """Build an idle agent with zeroed performance from a registration."""
        return cls(
            type=registration.type,
            status=AgentStatus.IDLE,
            capabilities=list(registration.capabilities),
            config=AgentConfig(
                max_concurrent_tasks=registration.max_concurrent_tasks,
                working_hours=registration.working_hours or WorkingHours(),
                timezone=registration.timezone or "UTC",
                skills=list(registration.capabilities),
            ),
        )

    @property
    def load_ratio(self) -> float:
        return len(self.current_tasks) / self.config.max_concurrent_tasks

    @property
    def has_capacity(self) -> bool:
        return len(self.current_tasks) < self.config.max_concurrent_tasks

    def is_available(self) -> bool:
        """Idle, or active with a free slot."""
        if self.status == AgentStatus.IDLE:
            return self.has_capacity
        return self.status == AgentStatus.ACTIVE and self.has_capacity

    def summary(self) -> Dict[str, Any]:
        """Per-agent status summary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "current_tasks": len(self.current_tasks),
            "max_concurrent_tasks": self.config.max_concurrent_tasks,
            "performance": self.performance.model_dump(mode="json"),
        }
