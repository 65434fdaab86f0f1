"""In-process agent registry and pending task queue."""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from outreach_engine.core.exceptions import AgentNotFoundError
from outreach_engine.core.logging import get_logger
from outreach_engine.models.agent import Agent, AgentStatus
from outreach_engine.models.task import Task
from outreach_engine.utils.agent_scoring import AgentScorer, select_best_agent

logger = get_logger(__name__)


@dataclass
class Reservation:
    """A task slot taken on an agent, with what is needed to undo it."""
    agent: Agent
    task_id: str
    previous_status: AgentStatus


class AgentRegistry:
    """
    Live set of registered agents.

    Slot changes go through the registry lock so selection and reservation
    happen as one step.
    """

    def __init__(self, scorer: Optional[AgentScorer] = None):
        self._agents: Dict[str, Agent] = {}
        self._lock = asyncio.Lock()
        self.scorer = scorer or AgentScorer()

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def require(self, agent_id: Optional[str], task_id: Optional[str] = None) -> Agent:
        agent = self._agents.get(agent_id) if agent_id else None
        if agent is None:
            raise AgentNotFoundError(agent_id, task_id=task_id)
        return agent

    def all(self) -> List[Agent]:
        """Agents ordered by id."""
        return [self._agents[agent_id] for agent_id in sorted(self._agents)]

    async def add(self, agent: Agent) -> None:
        async with self._lock:
            self._agents[agent.id] = agent

    async def reserve(self, task: Task) -> Optional[Reservation]:
        """Pick the best agent for ``task`` and take one of its slots."""
        async with self._lock:
            agent = select_best_agent(self._agents.values(), task, self.scorer)
            if agent is None:
                return None

            reservation = Reservation(agent=agent, task_id=task.id, previous_status=agent.status)
            agent.current_tasks.append(task.id)
            if agent.status == AgentStatus.IDLE:
                agent.status = AgentStatus.ACTIVE
            return reservation

    async def attach(self, agent_id: str, task_id: str) -> bool:
        """Reattach an in-flight task loaded from the store; False when it no longer fits."""
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None or not agent.has_capacity:
                return False
            if task_id not in agent.current_tasks:
                agent.current_tasks.append(task_id)
            if agent.status == AgentStatus.IDLE:
                agent.status = AgentStatus.ACTIVE
            return True

    async def rollback(self, reservation: Reservation) -> None:
        async with self._lock:
            agent = reservation.agent
            if reservation.task_id in agent.current_tasks:
                agent.current_tasks.remove(reservation.task_id)
            agent.status = reservation.previous_status
        logger.warning(
            "Rolled back agent reservation",
            agent_id=reservation.agent.id,
            task_id=reservation.task_id,
        )

    async def release(self, agent: Agent, task_id: str) -> None:
        """Drop ``task_id`` from the agent; an agent left with no tasks goes idle."""
        async with self._lock:
            if task_id in agent.current_tasks:
                agent.current_tasks.remove(task_id)
            if not agent.current_tasks and agent.status in (AgentStatus.ACTIVE, AgentStatus.BUSY):
                agent.status = AgentStatus.IDLE

    async def mark_all(self, status: AgentStatus) -> List[Agent]:
        async with self._lock:
            for agent in self._agents.values():
                agent.status = status
            return self.all()

    def active_count(self) -> int:
        return sum(1 for agent in self._agents.values() if agent.status == AgentStatus.ACTIVE)


class TaskQueue:
    """FIFO of tasks waiting for an agent."""

    def __init__(self):
        self._tasks: Deque[Task] = deque()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return any(task.id == task_id for task in self._tasks)

    def append(self, task: Task) -> bool:
        """Add a task at the tail; an id already waiting is not queued twice."""
        if task.id in self:
            return False
        self._tasks.append(task)
        return True

    def take(self, limit: int) -> List[Task]:
        """Remove and return up to ``limit`` tasks from the head."""
        batch = []
        while self._tasks and len(batch) < limit:
            batch.append(self._tasks.popleft())
        return batch

    def snapshot(self) -> List[Task]:
        return list(self._tasks)
