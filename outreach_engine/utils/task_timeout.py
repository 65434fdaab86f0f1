"""
Timeout monitoring for in-flight outreach tasks.

Tracks when each task was handed to an agent and reports tasks that stayed
assigned or in progress past the configured limit, so the coordinator can
turn them into failures.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from outreach_engine.models.common import utc_now

logger = structlog.get_logger(__name__)


class TimeoutStatus(Enum):
    """Enumeration of timeout statuses."""
    ACTIVE = "active"
    WARNING = "warning"  # Past 80% of the limit
    EXPIRED = "expired"  # Past the limit, not yet failed
    FAILED = "failed"  # Failure reported to the coordinator


@dataclass
class TaskTimeout:
    """Timeout tracking entry for one in-flight task."""
    task_id: str
    agent_id: Optional[str]
    started_at: datetime
    timeout_threshold: timedelta
    status: TimeoutStatus = TimeoutStatus.ACTIVE
    warning_logged: bool = False
    updated_at: datetime = field(default_factory=utc_now)

    def deadline(self) -> datetime:
        return self.started_at + self.timeout_threshold

    def time_remaining(self, now: datetime) -> timedelta:
        return self.deadline() - now

    def is_expired(self, now: datetime) -> bool:
        return now > self.deadline()

    def is_warning_threshold(self, now: datetime) -> bool:
        remaining = self.time_remaining(now)
        return timedelta(0) < remaining <= self.timeout_threshold * 0.2

    def to_dict(self, now: datetime) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "started_at": self.started_at.isoformat(),
            "timeout_seconds": int(self.timeout_threshold.total_seconds()),
            "status": self.status.value,
            "seconds_remaining": max(0, int(self.time_remaining(now).total_seconds())),
        }


class TaskTimeoutMonitor:
    """
    Monitors in-flight tasks and reports the ones that exceeded the limit.
    """

    def __init__(
        self,
        timeout_seconds: int = 900,
        interval_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize timeout monitor.

        Args:
            timeout_seconds: Seconds a task may stay in flight
            interval_seconds: Seconds between sweeps
            clock: Source of the current time
        """
        self.timeout_threshold = timedelta(seconds=timeout_seconds)
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.active_timeouts: Dict[str, TaskTimeout] = {}
        self._monitoring_task: Optional[asyncio.Task] = None

    def track(self, task_id: str, agent_id: Optional[str], started_at: Optional[datetime] = None) -> TaskTimeout:
        """Start (or restart) tracking a task."""
        timeout = TaskTimeout(
            task_id=task_id,
            agent_id=agent_id,
            started_at=started_at or self.clock(),
            timeout_threshold=self.timeout_threshold,
        )
        self.active_timeouts[task_id] = timeout
        return timeout

    def untrack(self, task_id: str) -> bool:
        return self.active_timeouts.pop(task_id, None) is not None

    def get_expired(self) -> List[TaskTimeout]:
        now = self.clock()
        return [
            timeout for timeout in self.active_timeouts.values()
            if timeout.is_expired(now) and timeout.status != TimeoutStatus.FAILED
        ]

    def check_timeouts(self) -> List[TaskTimeout]:
        """Flag warnings and return the expired entries."""
        now = self.clock()
        for timeout in self.active_timeouts.values():
            if timeout.is_warning_threshold(now) and not timeout.warning_logged:
                timeout.status = TimeoutStatus.WARNING
                timeout.warning_logged = True
                timeout.updated_at = now
                logger.warning(
                    "Task approaching timeout",
                    task_id=timeout.task_id,
                    agent_id=timeout.agent_id,
                    seconds_remaining=int(timeout.time_remaining(now).total_seconds()),
                )

        expired = self.get_expired()
        for timeout in expired:
            timeout.status = TimeoutStatus.EXPIRED
            timeout.updated_at = now

        if expired:
            logger.info(
                "Timeout check complete",
                expired_count=len(expired),
                total_active=len(self.active_timeouts),
            )
        return expired

    def mark_failed(self, task_id: str) -> None:
        timeout = self.active_timeouts.get(task_id)
        if timeout is not None:
            timeout.status = TimeoutStatus.FAILED
            timeout.updated_at = self.clock()

    async def start_monitoring(self, on_expired: Callable[[TaskTimeout], Awaitable[Any]]) -> None:
        """Start the background sweep calling ``on_expired`` per expired task."""
        if self._monitoring_task and not self._monitoring_task.done():
            logger.warning("Timeout monitoring already running")
            return

        self._monitoring_task = asyncio.create_task(self._monitor_timeouts(on_expired))
        logger.info("Timeout monitoring started", interval_seconds=self.interval_seconds)

    async def stop_monitoring(self) -> None:
        if self._monitoring_task and not self._monitoring_task.done():
            self._monitoring_task.cancel()
            try:
                await self._monitoring_task
            except asyncio.CancelledError:
                pass
            logger.info("Timeout monitoring stopped")

    async def _monitor_timeouts(self, on_expired: Callable[[TaskTimeout], Awaitable[Any]]) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                for timeout in self.check_timeouts():
                    await on_expired(timeout)
            except asyncio.CancelledError:
                logger.info("Timeout monitoring loop cancelled")
                break
            except Exception as e:
                logger.error("Error in timeout monitoring loop", error=str(e), exc_info=True)

    def get_timeout_statistics(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "tracked_tasks": len(self.active_timeouts),
            "expired_tasks": len([t for t in self.active_timeouts.values() if t.is_expired(now)]),
            "warning_tasks": len([t for t in self.active_timeouts.values() if t.is_warning_threshold(now)]),
            "timeout_seconds": int(self.timeout_threshold.total_seconds()),
            "monitoring_active": bool(self._monitoring_task and not self._monitoring_task.done()),
        }
