"""
Agent registration and coordinator status endpoints.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, status

from outreach_engine.core.dependencies import get_task_coordinator
from outreach_engine.core.exceptions import OutreachError, map_domain_error
from outreach_engine.models.agent import AgentRegistration
from outreach_engine.models.schemas import OutcomeResponse
from outreach_engine.services.coordinator import TaskCoordinator

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["agents"])


@router.post("/agents", response_model=OutcomeResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(
    registration: AgentRegistration,
    coordinator: TaskCoordinator = Depends(get_task_coordinator),
):
    """
    Register a new outreach agent.

    The agent starts idle with zeroed performance and becomes eligible for
    queued work on the next drain.

    Args:
        registration: Agent type, capabilities and concurrency limit
        coordinator: Task coordinator instance

    Returns:
        Outcome carrying the generated agent id

    Raises:
        BaseAPIException: If the agent could not be stored
    """
    try:
        outcome = await coordinator.register_agent(registration)
    except OutreachError as e:
        logger.error("Agent registration failed", agent_type=registration.type.value, error=e.detail)
        raise map_domain_error(e)

    logger.info("Agent registered", agent_id=outcome.agent_id, agent_type=registration.type.value)
    return OutcomeResponse.from_outcome(outcome)


@router.get("/coordinator/status")
async def get_coordinator_status(
    coordinator: TaskCoordinator = Depends(get_task_coordinator),
) -> Dict[str, Any]:
    """Agents, queue depth, metrics and timeout statistics."""
    return coordinator.get_coordinator_status()
