"""SQL for agents, tasks and customer history, on top of the persistence gateway."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach_engine.models.agent import Agent, AgentStatus
from outreach_engine.models.common import ensure_utc
from outreach_engine.models.customer import ContactAttempt, Customer, PaymentRecord
from outreach_engine.models.task import Task, TaskStatus
from outreach_engine.services.database import PersistenceGateway


def _json_column(value: Any) -> Any:
    """JSON columns arrive as text from some drivers."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _timestamp(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class CoordinationRepository:
    """Persistence of agent and task state."""

    def __init__(self, db: PersistenceGateway):
        self.db = db

    # Agents
    async def insert_agent(self, agent: Agent) -> None:
        await self.db.execute(
            """
            INSERT INTO agents (id, type, status, capabilities, current_tasks, performance, config)
            VALUES (:id, :type, :status, :capabilities, :current_tasks,
                    CAST(:performance AS JSONB), CAST(:config AS JSONB))
            """,
            {
                "id": agent.id,
                "type": agent.type.value,
                "status": agent.status.value,
                "capabilities": list(agent.capabilities),
                "current_tasks": len(agent.current_tasks),
                "performance": agent.performance.model_dump_json(),
                "config": agent.config.model_dump_json(),
            },
        )

    async def update_agent(self, agent: Agent, when: datetime) -> None:
        await self.db.execute(
            """
            UPDATE agents
            SET status = :status, current_tasks = :current_tasks,
                performance = CAST(:performance AS JSONB), updated_at = :updated_at
            WHERE id = :id
            """,
            {
                "id": agent.id,
                "status": agent.status.value,
                "current_tasks": len(agent.current_tasks),
                "performance": agent.performance.model_dump_json(),
                "updated_at": when,
            },
        )

    async def load_active_agents(self) -> List[Agent]:
        """Agents not marked offline; in-flight task ids are reattached separately."""
        rows = await self.db.query(
            "SELECT * FROM agents WHERE status != :offline ORDER BY id",
            {"offline": AgentStatus.OFFLINE.value},
        )
        agents = []
        for row in rows:
            agents.append(
                Agent(
                    id=str(row["id"]),
                    type=row["type"],
                    status=row["status"],
                    capabilities=list(row.get("capabilities") or []),
                    current_tasks=[],
                    performance=_json_column(row["performance"]),
                    config=_json_column(row["config"]),
                )
            )
        return agents

    # Tasks
    async def insert_task(self, task: Task) -> None:
        await self.db.execute(
            """
            INSERT INTO tasks (id, type, priority, customer_id, campaign_id, status, context,
                               due_at, attempts, max_attempts, next_attempt_at, created_at, updated_at)
            VALUES (:id, :type, :priority, :customer_id, :campaign_id, :status, CAST(:context AS JSONB),
                    :due_at, :attempts, :max_attempts, :next_attempt_at, :created_at, :updated_at)
            """,
            {
                "id": task.id,
                "type": task.type.value,
                "priority": task.priority.value,
                "customer_id": task.customer_id,
                "campaign_id": task.campaign_id,
                "status": task.status.value,
                "context": json.dumps(task.context, default=str),
                "due_at": task.due_at,
                "attempts": task.attempts,
                "max_attempts": task.max_attempts,
                "next_attempt_at": task.next_attempt_at,
                "created_at": task.created_at,
                "updated_at": task.updated_at,
            },
        )

    async def update_task(self, task: Task) -> None:
        await self.db.execute(
            """
            UPDATE tasks
            SET status = :status, assigned_agent_id = :assigned_agent_id, attempts = :attempts,
                assigned_at = :assigned_at, completed_at = :completed_at,
                next_attempt_at = :next_attempt_at, last_error = :last_error,
                context = CAST(:context AS JSONB), updated_at = :updated_at
            WHERE id = :id
            """,
            {
                "id": task.id,
                "status": task.status.value,
                "assigned_agent_id": task.assigned_agent_id,
                "attempts": task.attempts,
                "assigned_at": task.assigned_at,
                "completed_at": task.completed_at,
                "next_attempt_at": task.next_attempt_at,
                "last_error": task.last_error,
                "context": json.dumps(task.context, default=str),
                "updated_at": task.updated_at,
            },
        )

    async def get_task(self, task_id: str) -> Optional[Task]:
        rows = await self.db.query("SELECT * FROM tasks WHERE id = :id", {"id": task_id})
        if not rows:
            return None
        return self._task_from_row(rows[0])

    async def load_open_tasks(self) -> List[Task]:
        """Pending and in-flight tasks, oldest first."""
        rows = await self.db.query(
            """
            SELECT * FROM tasks
            WHERE status IN (:pending, :assigned, :in_progress)
            ORDER BY created_at
            """,
            {
                "pending": TaskStatus.PENDING.value,
                "assigned": TaskStatus.ASSIGNED.value,
                "in_progress": TaskStatus.IN_PROGRESS.value,
            },
        )
        return [self._task_from_row(row) for row in rows]

    @staticmethod
    def _task_from_row(row: Dict[str, Any]) -> Task:
        return Task(
            id=str(row["id"]),
            type=row["type"],
            priority=row["priority"],
            customer_id=str(row["customer_id"]),
            campaign_id=str(row["campaign_id"]) if row.get("campaign_id") else None,
            assigned_agent_id=str(row["assigned_agent_id"]) if row.get("assigned_agent_id") else None,
            status=row["status"],
            context=_json_column(row.get("context")) or {},
            created_at=_timestamp(row["created_at"]),
            updated_at=_timestamp(row["updated_at"]),
            due_at=_timestamp(row.get("due_at")),
            assigned_at=_timestamp(row.get("assigned_at")),
            completed_at=_timestamp(row.get("completed_at")),
            next_attempt_at=_timestamp(row.get("next_attempt_at")),
            attempts=row.get("attempts") or 0,
            max_attempts=row.get("max_attempts") or 3,
            last_error=row.get("last_error"),
        )


class CustomerRepository:
    """Read access to customer, payment and communication records."""

    def __init__(self, db: PersistenceGateway):
        self.db = db

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        rows = await self.db.query("SELECT * FROM customers WHERE id = :id", {"id": customer_id})
        if not rows:
            return None
        row = rows[0]
        return Customer(
            id=str(row["id"]),
            company_name=row["company_name"],
            contact_name=row.get("contact_name"),
            email=row.get("email"),
            phone=row.get("phone"),
            mobile=row.get("mobile"),
            address=_json_column(row.get("address")),
            preferred_contact_method=row.get("preferred_contact_method"),
            profile=_json_column(row.get("profile")),
            tags=row.get("tags"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_payment_history(self, customer_id: str, since: datetime) -> List[PaymentRecord]:
        """Payment records created since ``since``, newest due date first."""
        rows = await self.db.query(
            """
            SELECT * FROM payment_records
            WHERE customer_id = :customer_id AND created_at >= :since
            ORDER BY due_date DESC
            """,
            {"customer_id": customer_id, "since": since},
        )
        return [
            PaymentRecord(
                id=str(row["id"]),
                amount=float(row["amount"]),
                currency=row.get("currency") or "USD",
                due_date=row["due_date"],
                paid_date=row.get("paid_date"),
                status=row["status"],
                invoice_number=row.get("invoice_number"),
                description=row.get("description"),
            )
            for row in rows
        ]

    async def get_communication_history(self, customer_id: str, since: datetime) -> List[ContactAttempt]:
        """Contact attempts on the customer's tasks since ``since``, newest first."""
        rows = await self.db.query(
            """
            SELECT ca.* FROM contact_attempts ca
            JOIN tasks t ON ca.task_id = t.id
            WHERE t.customer_id = :customer_id AND ca.timestamp >= :since
            ORDER BY ca.timestamp DESC
            """,
            {"customer_id": customer_id, "since": since},
        )
        return [
            ContactAttempt(
                id=str(row["id"]),
                task_id=str(row["task_id"]) if row.get("task_id") else None,
                agent_id=str(row["agent_id"]) if row.get("agent_id") else None,
                channel=row["channel"],
                timestamp=row["timestamp"],
                status=row["status"],
                response=row.get("response"),
                duration=row.get("duration"),
                metadata=_json_column(row.get("metadata")),
            )
            for row in rows
        ]
