"""
Agent scoring and best-fit selection for task placement.
"""
from typing import Iterable, List, Optional, Tuple

import structlog

from outreach_engine.models.agent import Agent
from outreach_engine.models.common import Priority
from outreach_engine.models.task import Task, agent_can_handle

logger = structlog.get_logger(__name__)

# Stand-in response time for agents without samples yet
DEFAULT_RESPONSE_TIME_MS = 1000.0
RESPONSE_TIME_CEILING_MS = 5000.0
HIGH_SATISFACTION_THRESHOLD = 8.0


class AgentScorer:
    """Scores an agent's fit for a task on a 0-100 scale."""

    def __init__(self):
        self.success_weight = 40.0
        self.response_time_weight = 30.0
        self.load_weight = 20.0
        self.priority_weight = 10.0

    def score(self, agent: Agent, task: Task) -> float:
        """
        Calculate the placement score.

        Args:
            agent: Candidate agent
            task: Task being placed

        Returns:
            Score; higher is a better fit
        """
        performance = agent.performance
        success_ratio = performance.tasks_successful / max(performance.tasks_completed, 1)

        response_time = performance.average_response_time or DEFAULT_RESPONSE_TIME_MS
        speed = max(0.0, (RESPONSE_TIME_CEILING_MS - response_time) / RESPONSE_TIME_CEILING_MS)

        return (
            self.success_weight * success_ratio
            + self.response_time_weight * speed
            + self.load_weight * (1 - agent.load_ratio)
            + self._priority_bonus(agent, task)
        )

    def _priority_bonus(self, agent: Agent, task: Task) -> float:
        if task.priority in (Priority.HIGH, Priority.URGENT):
            if agent.performance.customer_satisfaction_score > HIGH_SATISFACTION_THRESHOLD:
                return self.priority_weight
            return self.priority_weight / 2
        return self.priority_weight


def eligible_agents(agents: Iterable[Agent], task: Task) -> List[Agent]:
    """Available agents whose type can take the task."""
    return [
        agent for agent in agents
        if agent.is_available() and agent_can_handle(agent.type, task.type)
    ]


def rank_agents(agents: Iterable[Agent], task: Task, scorer: Optional[AgentScorer] = None) -> List[Tuple[Agent, float]]:
    """Eligible agents with scores, best first; equal scores order by agent id."""
    scorer = scorer or AgentScorer()
    scored = [(agent, scorer.score(agent, task)) for agent in eligible_agents(agents, task)]
    scored.sort(key=lambda pair: (-pair[1], pair[0].id))
    return scored


def select_best_agent(agents: Iterable[Agent], task: Task, scorer: Optional[AgentScorer] = None) -> Optional[Agent]:
    """Highest scoring eligible agent, or None when nothing can take the task."""
    ranked = rank_agents(agents, task, scorer)
    if not ranked:
        return None

    best, score = ranked[0]
    logger.debug(
        "Selected agent for task",
        task_id=task.id,
        agent_id=best.id,
        score=round(score, 2),
        candidates=len(ranked),
    )
    return best
