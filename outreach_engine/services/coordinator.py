"""Task coordination engine: agent registration, placement, completion and retry."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.core.exceptions import (
    InvalidTaskTransitionError,
    OutreachError,
    TaskNotFoundError,
    TaskTimeoutError,
)
from outreach_engine.core.logging import correlation_context, get_logger, log_business_event
from outreach_engine.core.retry import compute_backoff_delay, get_task_backoff_config
from outreach_engine.models.agent import Agent, AgentRegistration, AgentStatus
from outreach_engine.models.common import utc_now
from outreach_engine.models.events import (
    CoordinationOutcome,
    CoordinatorEvent,
    EventName,
    OutcomeKind,
)
from outreach_engine.models.task import Task, TaskStatus
from outreach_engine.services.cache import CacheGateway, ReadThroughCache
from outreach_engine.services.dispatch import WorkDispatchGateway
from outreach_engine.services.registry import AgentRegistry, Reservation, TaskQueue
from outreach_engine.services.repository import CoordinationRepository
from outreach_engine.utils.task_timeout import TaskTimeout, TaskTimeoutMonitor

logger = get_logger(__name__)

NO_AVAILABLE_AGENTS = "no_available_agents"
METRICS_CACHE_KEY = "coordinator:metrics"


class CoordinatorMetrics(BaseModel):
    """Aggregate counters published by the metrics loop."""
    tasks_processed: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_task_time: float = 0.0
    agent_utilization: float = 0.0


class TaskCoordinator:
    """
    Matches outreach tasks to agents and tracks them until they finish.

    State lives in an injected AgentRegistry and TaskQueue; every mutation
    is written through the repository and cache, and the events it produces
    are returned in a CoordinationOutcome and published in one place.
    """

    def __init__(
        self,
        repository: CoordinationRepository,
        cache: CacheGateway,
        dispatcher: WorkDispatchGateway,
        registry: Optional[AgentRegistry] = None,
        queue: Optional[TaskQueue] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.cache = cache
        self.dispatcher = dispatcher
        self.registry = registry or AgentRegistry()
        self.queue = queue or TaskQueue()
        self.clock = clock
        self.metrics = CoordinatorMetrics()
        self.is_running = False

        self.tasks: ReadThroughCache[Task] = ReadThroughCache(
            cache=cache,
            key_prefix="task",
            loader=repository.get_task,
            serialize=lambda task: task.model_dump(mode="json"),
            deserialize=Task.model_validate,
            ttl_seconds=self.settings.task_cache_ttl_seconds,
        )
        self.timeout_monitor = TaskTimeoutMonitor(
            timeout_seconds=self.settings.task_timeout_seconds,
            interval_seconds=self.settings.timeout_sweep_interval_seconds,
            clock=clock,
        )
        self._backoff = get_task_backoff_config(
            base_delay=self.settings.task_retry_base_delay_seconds,
            max_delay=self.settings.task_retry_max_delay_seconds,
        )
        self._loops: List[asyncio.Task] = []
        self._task_locks: Dict[str, asyncio.Lock] = {}
        self._task_lock_users: Dict[str, int] = {}

    # Lifecycle
    async def initialize(self) -> CoordinationOutcome:
        """Load persisted agents and open tasks, then start the periodic loops."""
        agents = await self.repository.load_active_agents()
        for agent in agents:
            await self.registry.add(agent)

        for task in await self.repository.load_open_tasks():
            await self._restore_task(task)

        self._loops = [
            asyncio.create_task(
                self._run_periodic("queue_drain", self.settings.queue_drain_interval_seconds, self.process_queued_tasks)
            ),
            asyncio.create_task(
                self._run_periodic("metrics", self.settings.metrics_interval_seconds, self.update_metrics)
            ),
        ]
        await self.timeout_monitor.start_monitoring(self._on_task_timeout)
        self.is_running = True

        outcome = CoordinationOutcome(
            result=OutcomeKind.INITIALIZED,
            events=[
                self._event(
                    EventName.COORDINATOR_INITIALIZED,
                    agent_count=len(self.registry),
                    queue_size=len(self.queue),
                )
            ],
        )
        logger.info("Task coordinator initialized", agent_count=len(self.registry), queue_size=len(self.queue))
        await self._publish_events(outcome)
        return outcome

    async def shutdown(self) -> None:
        """Stop the loops and mark every agent offline."""
        self.is_running = False
        for loop in self._loops:
            loop.cancel()
        for loop in self._loops:
            try:
                await loop
            except asyncio.CancelledError:
                pass
        self._loops = []
        await self.timeout_monitor.stop_monitoring()

        now = self.clock()
        for agent in await self.registry.mark_all(AgentStatus.OFFLINE):
            await self.repository.update_agent(agent, now)
        logger.info("Task coordinator shut down", agent_count=len(self.registry))

    # Agents
    async def register_agent(self, registration: AgentRegistration) -> CoordinationOutcome:
        agent = Agent.from_registration(registration)
        await self.repository.insert_agent(agent)
        await self.registry.add(agent)
        await self._cache_agent(agent)

        log_business_event("agent_registered", agent_id=agent.id, agent_type=agent.type.value)
        outcome = CoordinationOutcome(
            result=OutcomeKind.REGISTERED,
            agent_id=agent.id,
            events=[self._event(EventName.AGENT_REGISTERED, agent=agent.summary())],
        )
        await self._publish_events(outcome)
        return outcome

    # Tasks
    async def assign_task(self, task: Task) -> CoordinationOutcome:
        """Persist a new task and place it on the best agent, or queue it."""
        with correlation_context(task_id=task.id, customer_id=task.customer_id):
            await self.repository.insert_task(task)
            await self.tasks.put(task.id, task)
            outcome = await self._place(task, announce_queued=True)
        await self._publish_events(outcome)
        return outcome

    async def mark_task_in_progress(self, task_id: str) -> CoordinationOutcome:
        """Executor acknowledged the task and started working on it."""
        async with self._task_guard(task_id):
            task = await self._require_task(task_id)
            task.transition_to(TaskStatus.IN_PROGRESS, self.clock())
            await self._save_task(task)
        return CoordinationOutcome(
            result=OutcomeKind.IN_PROGRESS,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
        )

    async def complete_task(self, task_id: str, result: Optional[Dict[str, Any]] = None) -> CoordinationOutcome:
        async with self._task_guard(task_id):
            task = await self._require_task(task_id)
            if not task.is_in_flight:
                raise InvalidTaskTransitionError(task_id, task.status.value, TaskStatus.COMPLETED.value)
            agent = self.registry.require(task.assigned_agent_id, task_id=task_id)

            now = self.clock()
            task.transition_to(TaskStatus.COMPLETED, now)
            task.completed_at = now
            if result:
                task.context = {**task.context, "result": result}

            await self.registry.release(agent, task_id)
            performance = agent.performance
            performance.tasks_completed += 1
            performance.tasks_successful += 1
            if task.assigned_at is not None:
                elapsed_ms = (now - task.assigned_at).total_seconds() * 1000
                performance.average_response_time = _running_average(
                    performance.average_response_time, elapsed_ms, performance.tasks_successful
                )
            performance.last_updated = now

            self.metrics.tasks_completed += 1
            self.metrics.average_task_time = _running_average(
                self.metrics.average_task_time,
                (now - task.created_at).total_seconds() * 1000,
                self.metrics.tasks_completed,
            )

            await self._save_task(task)
            await self._save_agent(agent, now)
            self.timeout_monitor.untrack(task_id)

            log_business_event("task_completed", task_id=task_id, agent_id=agent.id)
            outcome = CoordinationOutcome(
                result=OutcomeKind.COMPLETED,
                task_id=task_id,
                agent_id=agent.id,
                attempts=task.attempts,
                events=[
                    self._event(
                        EventName.TASK_COMPLETED,
                        task_id=task_id,
                        agent_id=agent.id,
                        result=result or {},
                    )
                ],
            )
        await self._publish_events(outcome)
        await self.process_queued_tasks()
        return outcome

    async def fail_task(self, task_id: str, error: Union[str, Exception]) -> CoordinationOutcome:
        """Record an execution failure; retry with backoff until attempts run out."""
        async with self._task_guard(task_id):
            task = await self._require_task(task_id)
            if not task.is_in_flight:
                raise InvalidTaskTransitionError(task_id, task.status.value, TaskStatus.FAILED.value)

            now = self.clock()
            agent = self.registry.get(task.assigned_agent_id) if task.assigned_agent_id else None
            if agent is not None:
                await self.registry.release(agent, task_id)
                agent.performance.tasks_completed += 1
                agent.performance.last_updated = now
            elif task.assigned_agent_id:
                logger.warning("Failed task references unknown agent", agent_id=task.assigned_agent_id)

            agent_id = task.assigned_agent_id
            task.attempts += 1
            task.last_error = str(error)

            if task.will_retry:
                task.transition_to(TaskStatus.PENDING, now)
                task.assigned_agent_id = None
                task.assigned_at = None
                task.next_attempt_at = now + timedelta(seconds=compute_backoff_delay(task.attempts, self._backoff))
                self.queue.append(task)
                result = OutcomeKind.RETRYING
            else:
                task.transition_to(TaskStatus.FAILED, now)
                task.next_attempt_at = None
                self.metrics.tasks_failed += 1
                result = OutcomeKind.FAILED

            await self._save_task(task)
            if agent is not None:
                await self._save_agent(agent, now)
            self.timeout_monitor.untrack(task_id)

            will_retry = result == OutcomeKind.RETRYING
            log_business_event(
                "task_failed",
                task_id=task_id,
                agent_id=agent_id,
                attempts=task.attempts,
                will_retry=will_retry,
            )
            if not will_retry:
                logger.error(
                    "Task failed permanently",
                    agent_id=agent_id,
                    attempts=task.attempts,
                    error=task.last_error,
                )
            outcome = CoordinationOutcome(
                result=result,
                task_id=task_id,
                agent_id=agent_id,
                reason=task.last_error,
                attempts=task.attempts,
                events=[
                    self._event(
                        EventName.TASK_FAILED,
                        task_id=task_id,
                        agent_id=agent_id,
                        error=task.last_error,
                        attempts=task.attempts,
                        will_retry=will_retry,
                    )
                ],
            )
        await self._publish_events(outcome)
        return outcome

    async def process_queued_tasks(self) -> List[CoordinationOutcome]:
        """Try to place up to one batch of queued tasks, in FIFO order."""
        if not len(self.queue):
            return []

        now = self.clock()
        outcomes = []
        for task in self.queue.take(self.settings.queue_batch_size):
            if not task.is_ready(now):
                self.queue.append(task)
                continue
            try:
                outcome = await self._place(task, announce_queued=False)
            except OutreachError as e:
                logger.error("Failed to process queued task", task_id=task.id, error=e.detail)
                self.queue.append(task)
                continue
            outcomes.append(outcome)

        for outcome in outcomes:
            await self._publish_events(outcome)
        return outcomes

    async def update_metrics(self) -> CoordinatorMetrics:
        total = len(self.registry)
        active = self.registry.active_count()
        self.metrics.agent_utilization = (active / total) * 100 if total else 0.0

        await self.cache.set_json(
            METRICS_CACHE_KEY,
            self.metrics.model_dump(),
            self.settings.metrics_cache_ttl_seconds,
        )
        outcome = CoordinationOutcome(
            result=OutcomeKind.METRICS_UPDATED,
            events=[
                self._event(
                    EventName.COORDINATOR_METRICS,
                    metrics=self.metrics.model_dump(),
                    agent_count=total,
                    active_agents=active,
                    queue_size=len(self.queue),
                )
            ],
        )
        await self._publish_events(outcome)
        return self.metrics

    async def sweep_timeouts(self) -> List[CoordinationOutcome]:
        """Fail every task that stayed in flight past the timeout."""
        outcomes = []
        for timeout in self.timeout_monitor.check_timeouts():
            outcome = await self._on_task_timeout(timeout)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def get_coordinator_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "agent_count": len(self.registry),
            "queue_size": len(self.queue),
            "metrics": self.metrics.model_dump(),
            "agents": [agent.summary() for agent in self.registry.all()],
            "timeouts": self.timeout_monitor.get_timeout_statistics(),
        }

    # Internals
    async def _place(self, task: Task, announce_queued: bool) -> CoordinationOutcome:
        reservation = await self.registry.reserve(task)
        if reservation is None:
            self.queue.append(task)
            logger.info("No available agent, task queued", task_id=task.id, task_type=task.type.value)
            events = []
            if announce_queued:
                events.append(
                    self._event(EventName.TASK_QUEUED, task_id=task.id, reason=NO_AVAILABLE_AGENTS)
                )
            return CoordinationOutcome(
                result=OutcomeKind.QUEUED,
                task_id=task.id,
                reason=NO_AVAILABLE_AGENTS,
                events=events,
            )

        agent = reservation.agent
        now = self.clock()
        previous = (task.status, task.assigned_agent_id, task.assigned_at, task.updated_at)
        task.transition_to(TaskStatus.ASSIGNED, now)
        task.assigned_agent_id = agent.id
        task.assigned_at = now

        try:
            await self._save_task(task)
            await self._save_agent(agent, now)
            await self.dispatcher.dispatch(task)
        except OutreachError:
            task.status, task.assigned_agent_id, task.assigned_at, task.updated_at = previous
            await self._undo_assignment(reservation, task, now)
            raise

        self.metrics.tasks_processed += 1
        self.timeout_monitor.track(task.id, agent.id, now)
        log_business_event("task_assigned", task_id=task.id, agent_id=agent.id, task_type=task.type.value)
        return CoordinationOutcome(
            result=OutcomeKind.ASSIGNED,
            task_id=task.id,
            agent_id=agent.id,
            attempts=task.attempts,
            events=[
                self._event(
                    EventName.TASK_ASSIGNED,
                    task_id=task.id,
                    agent_id=agent.id,
                    task_type=task.type.value,
                    priority=task.priority.value,
                )
            ],
        )

    async def _undo_assignment(self, reservation: Reservation, task: Task, now: datetime) -> None:
        await self.registry.rollback(reservation)
        try:
            await self._save_task(task)
            await self._save_agent(reservation.agent, now)
        except OutreachError as e:
            logger.error(
                "Could not persist rolled back assignment",
                task_id=task.id,
                agent_id=reservation.agent.id,
                error=e.detail,
            )

    async def _restore_task(self, task: Task) -> None:
        """Put an open task loaded from the store back into play."""
        if task.status == TaskStatus.PENDING:
            self.queue.append(task)
            return

        if task.assigned_agent_id and await self.registry.attach(task.assigned_agent_id, task.id):
            self.timeout_monitor.track(task.id, task.assigned_agent_id, task.assigned_at or task.updated_at)
            await self.tasks.put(task.id, task)
            return

        logger.warning("Requeueing orphaned in-flight task", task_id=task.id, agent_id=task.assigned_agent_id)
        task.transition_to(TaskStatus.PENDING, self.clock())
        task.assigned_agent_id = None
        task.assigned_at = None
        await self._save_task(task)
        self.queue.append(task)

    async def _on_task_timeout(self, timeout: TaskTimeout) -> Optional[CoordinationOutcome]:
        error = TaskTimeoutError(timeout.task_id, int(timeout.timeout_threshold.total_seconds()))
        try:
            outcome = await self.fail_task(timeout.task_id, error)
        except (TaskNotFoundError, InvalidTaskTransitionError) as e:
            logger.warning("Dropping timeout for task no longer in flight", task_id=timeout.task_id, error=e.detail)
            self.timeout_monitor.untrack(timeout.task_id)
            return None
        self.timeout_monitor.mark_failed(timeout.task_id)
        return outcome

    @asynccontextmanager
    async def _task_guard(self, task_id: str) -> AsyncIterator[None]:
        """Serialize status changes of one task; the task id is bound to the logs."""
        lock = self._task_locks.setdefault(task_id, asyncio.Lock())
        self._task_lock_users[task_id] = self._task_lock_users.get(task_id, 0) + 1
        try:
            async with lock:
                with correlation_context(task_id=task_id):
                    yield
        finally:
            self._task_lock_users[task_id] -= 1
            if not self._task_lock_users[task_id]:
                del self._task_lock_users[task_id]
                del self._task_locks[task_id]

    async def _require_task(self, task_id: str) -> Task:
        task = await self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def _save_task(self, task: Task) -> None:
        await self.repository.update_task(task)
        await self.tasks.put(task.id, task)

    async def _save_agent(self, agent: Agent, now: datetime) -> None:
        await self.repository.update_agent(agent, now)
        await self._cache_agent(agent)

    async def _cache_agent(self, agent: Agent) -> None:
        await self.cache.set_json(
            f"agent:{agent.id}",
            agent.model_dump(mode="json"),
            self.settings.agent_cache_ttl_seconds,
        )

    def _event(self, name: EventName, **payload) -> CoordinatorEvent:
        return CoordinatorEvent(name=name, payload=payload, timestamp=self.clock())

    async def _publish_events(self, outcome: CoordinationOutcome) -> None:
        for event in outcome.events:
            try:
                await self.cache.publish(event)
            except OutreachError as e:
                logger.warning("Event publish failed", event_name=event.name.value, error=e.detail)

    async def _run_periodic(self, name: str, interval: float, func: Callable[[], Awaitable[Any]]) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                await func()
            except asyncio.CancelledError:
                logger.info("Coordinator loop cancelled", loop=name)
                break
            except Exception as e:
                logger.error("Error in coordinator loop", loop=name, error=str(e), exc_info=True)


def _running_average(current: float, sample: float, count: int) -> float:
    if count <= 1:
        return sample
    return current + (sample - current) / count
