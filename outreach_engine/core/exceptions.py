"""
Custom exception classes for the outreach coordination service.
"""
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


# Domain exceptions raised by the engines and gateways
class OutreachError(Exception):
    """Base exception for coordination and context errors."""

    def __init__(self, detail: str, **context):
        self.detail = detail
        self.context = context
        super().__init__(detail)


class TaskNotFoundError(OutreachError):
    """Referenced task does not exist."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}", task_id=task_id)


class AgentNotFoundError(OutreachError):
    """Referenced agent does not exist in the registry."""

    def __init__(self, agent_id: Optional[str], task_id: Optional[str] = None):
        self.agent_id = agent_id
        self.task_id = task_id
        super().__init__(f"Agent not found: {agent_id}", agent_id=agent_id, task_id=task_id)


class InvalidTaskTransitionError(OutreachError):
    """Task status change that the lifecycle does not allow."""

    def __init__(self, task_id: str, current: str, requested: str):
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Task '{task_id}' cannot move from {current} to {requested}",
            task_id=task_id,
            current=current,
            requested=requested,
        )


class TaskTimeoutError(OutreachError):
    """Task stayed in flight longer than the configured timeout."""

    def __init__(self, task_id: str, timeout_seconds: int):
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Task '{task_id}' timed out after {timeout_seconds} seconds",
            task_id=task_id,
            timeout_seconds=timeout_seconds,
        )


class PersistenceError(OutreachError):
    """Persistence gateway call failed."""

    def __init__(self, detail: str, operation: Optional[str] = None, **context):
        self.operation = operation
        super().__init__(detail, operation=operation, **context)


class CacheError(OutreachError):
    """Cache or notification gateway call failed."""

    def __init__(self, detail: str, key: Optional[str] = None, **context):
        self.key = key
        super().__init__(detail, key=key, **context)


class DispatchError(OutreachError):
    """Work dispatch gateway could not hand a task to its executor."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **context):
        self.service_name = service_name
        self.status_code = status_code
        super().__init__(f"[{service_name}] {message}", service_name=service_name, status_code=status_code, **context)


class ServiceUnavailableError(OutreachError):
    """Circuit breaker rejected a call to an external service."""

    def __init__(self, service_name: str, detail: Optional[str] = None):
        self.service_name = service_name
        super().__init__(
            detail or f"External service '{service_name}' is currently unavailable",
            service_name=service_name,
        )


# API exceptions
class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class NotFoundAPIError(BaseAPIException):
    """Exception for missing tasks, agents or customers."""

    def __init__(self, detail: str, **context):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="OUT_001",
            context=context,
        )


class ConflictAPIError(BaseAPIException):
    """Exception for lifecycle violations."""

    def __init__(self, detail: str, **context):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="OUT_002",
            context=context,
        )


class InfrastructureAPIError(BaseAPIException):
    """Exception for persistence, cache or dispatch failures."""

    def __init__(self, detail: str, retry_after: Optional[int] = None, **context):
        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="OUT_003",
            headers=headers,
            context=context,
        )


def map_domain_error(error: OutreachError) -> BaseAPIException:
    """Map a domain error to an API exception."""
    if isinstance(error, (TaskNotFoundError, AgentNotFoundError)):
        return NotFoundAPIError(error.detail, **error.context)
    elif isinstance(error, InvalidTaskTransitionError):
        return ConflictAPIError(error.detail, **error.context)
    elif isinstance(error, (PersistenceError, CacheError, DispatchError, ServiceUnavailableError)):
        return InfrastructureAPIError(error.detail, retry_after=5, **error.context)
    else:
        return BaseAPIException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error.detail,
            error_code="INTERNAL_SERVER_ERROR",
            context=error.context,
        )
