"""
Task submission and executor reporting endpoints.
"""
import structlog
from fastapi import APIRouter, Depends, Query, status

from outreach_engine.core.dependencies import get_context_engine, get_task_coordinator
from outreach_engine.core.exceptions import OutreachError, map_domain_error
from outreach_engine.models.schemas import OutcomeResponse, TaskCompletionRequest, TaskFailureRequest
from outreach_engine.models.task import Task, TaskSubmission
from outreach_engine.services.context_engine import ContextEngine
from outreach_engine.services.coordinator import TaskCoordinator
from outreach_engine.utils.task_priority import prioritize_submission

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("", response_model=OutcomeResponse, status_code=status.HTTP_201_CREATED)
async def submit_task(
    submission: TaskSubmission,
    enrich: bool = Query(True, description="Raise the task priority from the customer's risk context"),
    coordinator: TaskCoordinator = Depends(get_task_coordinator),
    context_engine: ContextEngine = Depends(get_context_engine),
):
    """
    Submit an outreach task for assignment.

    When ``enrich`` is set, a riskier customer raises the task priority (it is
    never lowered) and a summary of the context travels with the task. A
    context failure does not block the submission; the task goes through as
    submitted.

    Args:
        submission: Task kind, customer and payload
        enrich: Whether to apply the customer context
        coordinator: Task coordinator instance
        context_engine: Customer context engine instance

    Returns:
        Outcome: assigned to an agent, or queued with the reason

    Raises:
        BaseAPIException: If the task could not be stored or dispatched
    """
    if enrich:
        try:
            context = await context_engine.get_customer_context(submission.customer_id)
        except OutreachError as e:
            logger.warning(
                "Customer context unavailable, submitting task as is",
                customer_id=submission.customer_id,
                error=e.detail,
            )
            context = None
        submission = prioritize_submission(submission, context)

    task = Task.from_submission(submission)
    try:
        outcome = await coordinator.assign_task(task)
    except OutreachError as e:
        logger.error("Task submission failed", task_id=task.id, error=e.detail)
        raise map_domain_error(e)

    logger.info(
        "Task submitted",
        task_id=task.id,
        task_type=task.type.value,
        priority=task.priority.value,
        result=outcome.result.value,
    )
    return OutcomeResponse.from_outcome(outcome)


@router.post("/{task_id}/start", response_model=OutcomeResponse)
async def start_task(task_id: str, coordinator: TaskCoordinator = Depends(get_task_coordinator)):
    """Executor acknowledges an assigned task."""
    try:
        outcome = await coordinator.mark_task_in_progress(task_id)
    except OutreachError as e:
        raise map_domain_error(e)
    return OutcomeResponse.from_outcome(outcome)


@router.post("/{task_id}/complete", response_model=OutcomeResponse)
async def complete_task(
    task_id: str,
    request: TaskCompletionRequest,
    coordinator: TaskCoordinator = Depends(get_task_coordinator),
):
    """
    Report that a task finished successfully.

    Frees the agent's slot and drains the queue.

    Raises:
        BaseAPIException: 404 for an unknown task or agent, 409 when the task
            is not in flight
    """
    try:
        outcome = await coordinator.complete_task(task_id, request.result)
    except OutreachError as e:
        logger.error("Task completion failed", task_id=task_id, error=e.detail)
        raise map_domain_error(e)
    return OutcomeResponse.from_outcome(outcome)


@router.post("/{task_id}/fail", response_model=OutcomeResponse)
async def fail_task(
    task_id: str,
    request: TaskFailureRequest,
    coordinator: TaskCoordinator = Depends(get_task_coordinator),
):
    """
    Report that a task failed.

    The task is retried after a backoff delay until its attempts run out.
    """
    try:
        outcome = await coordinator.fail_task(task_id, request.error)
    except OutreachError as e:
        logger.error("Task failure report rejected", task_id=task_id, error=e.detail)
        raise map_domain_error(e)
    return OutcomeResponse.from_outcome(outcome)
