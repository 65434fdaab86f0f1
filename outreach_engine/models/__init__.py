"""
Models package for the outreach coordination service.
"""
from .agent import Agent, AgentRegistration, AgentStatus, AgentType
from .context import CustomerContext, RiskAssessment
from .events import CoordinationOutcome, CoordinatorEvent, EventName
from .task import Task, TaskStatus, TaskSubmission, TaskType

__all__ = [
    "Agent",
    "AgentRegistration",
    "AgentStatus",
    "AgentType",
    "CoordinationOutcome",
    "CoordinatorEvent",
    "CustomerContext",
    "EventName",
    "RiskAssessment",
    "Task",
    "TaskStatus",
    "TaskSubmission",
    "TaskType",
]
