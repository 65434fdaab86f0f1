"""
Tests for the SQL repositories over a mocked persistence gateway.
"""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from outreach_engine.models.agent import Agent, AgentConfig, AgentType
from outreach_engine.models.common import ContactMethod
from outreach_engine.models.customer import ContactStatus, PaymentStatus
from outreach_engine.models.task import Task, TaskStatus, TaskType
from outreach_engine.services.repository import CoordinationRepository, CustomerRepository


@pytest.fixture
def db():
    gateway = MagicMock()
    gateway.query = AsyncMock(return_value=[])
    gateway.execute = AsyncMock(return_value=1)
    return gateway


class TestCoordinationRepository:

    @pytest.mark.asyncio
    async def test_insert_agent_serializes_json_columns(self, db):
        repository = CoordinationRepository(db)
        agent = Agent(id="a1", type=AgentType.EMAIL, config=AgentConfig(max_concurrent_tasks=3))

        await repository.insert_agent(agent)

        sql, params = db.execute.await_args.args
        assert "INSERT INTO agents" in sql
        assert params["type"] == "email"
        assert params["current_tasks"] == 0
        assert json.loads(params["config"])["max_concurrent_tasks"] == 3

    @pytest.mark.asyncio
    async def test_load_active_agents_parses_rows(self, db):
        db.query.return_value = [
            {
                "id": "a1",
                "type": "phone",
                "status": "idle",
                "capabilities": ["collections"],
                "performance": json.dumps({"tasks_completed": 4, "tasks_successful": 3}),
                "config": {"max_concurrent_tasks": 2},
            }
        ]
        repository = CoordinationRepository(db)

        agents = await repository.load_active_agents()

        assert agents[0].type == AgentType.PHONE
        assert agents[0].performance.tasks_successful == 3
        assert agents[0].config.max_concurrent_tasks == 2
        assert agents[0].current_tasks == []
        assert db.query.await_args.args[1] == {"offline": "offline"}

    @pytest.mark.asyncio
    async def test_get_task_round_trips_row(self, db):
        created = datetime(2024, 3, 1, 9, 30)
        db.query.return_value = [
            {
                "id": "t1",
                "type": "make_call",
                "priority": "high",
                "customer_id": "c1",
                "campaign_id": None,
                "assigned_agent_id": "a1",
                "status": "assigned",
                "context": '{"script": "reminder"}',
                "created_at": created,
                "updated_at": created,
                "assigned_at": created,
                "attempts": 1,
                "max_attempts": 3,
            }
        ]
        repository = CoordinationRepository(db)

        task = await repository.get_task("t1")

        assert task.status == TaskStatus.ASSIGNED
        assert task.context == {"script": "reminder"}
        assert task.created_at.tzinfo == timezone.utc
        assert task.assigned_agent_id == "a1"
        assert task.attempts == 1

    @pytest.mark.asyncio
    async def test_get_missing_task(self, db):
        assert await CoordinationRepository(db).get_task("nope") is None

    @pytest.mark.asyncio
    async def test_update_task_writes_retry_fields(self, db):
        repository = CoordinationRepository(db)
        task = Task(type=TaskType.SEND_SMS, customer_id="c1", attempts=2, last_error="undelivered")

        await repository.update_task(task)

        params = db.execute.await_args.args[1]
        assert params["attempts"] == 2
        assert params["last_error"] == "undelivered"
        assert params["status"] == "pending"

    @pytest.mark.asyncio
    async def test_update_task_writes_context(self, db):
        repository = CoordinationRepository(db)
        task = Task(type=TaskType.MAKE_CALL, customer_id="c1")
        task.context["customer_context"] = {"risk_level": "high", "risk_score": 62.5}

        await repository.update_task(task)

        sql, params = db.execute.await_args.args[:2]
        assert "context = CAST(:context AS JSONB)" in sql
        assert json.loads(params["context"]) == {"customer_context": {"risk_level": "high", "risk_score": 62.5}}


class TestCustomerRepository:

    @pytest.mark.asyncio
    async def test_get_customer_defaults_empty_columns(self, db):
        db.query.return_value = [
            {
                "id": "c1",
                "company_name": "Acme",
                "profile": None,
                "tags": None,
                "preferred_contact_method": "sms",
                "created_at": datetime(2021, 1, 1),
                "updated_at": datetime(2024, 1, 1),
            }
        ]

        customer = await CustomerRepository(db).get_customer("c1")

        assert customer.profile == {}
        assert customer.tags == []
        assert customer.preferred_contact_method == ContactMethod.SMS
        assert customer.created_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_payment_history_query(self, db):
        since = datetime(2022, 3, 15, tzinfo=timezone.utc)
        db.query.return_value = [
            {
                "id": "p1",
                "amount": "120.50",
                "currency": None,
                "due_date": datetime(2024, 1, 1),
                "paid_date": None,
                "status": "overdue",
            }
        ]

        records = await CustomerRepository(db).get_payment_history("c1", since)

        sql, params = db.query.await_args.args
        assert "ORDER BY due_date DESC" in sql
        assert params == {"customer_id": "c1", "since": since}
        assert records[0].amount == 120.5
        assert records[0].currency == "USD"
        assert records[0].status == PaymentStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_communication_history_joins_tasks(self, db):
        db.query.return_value = [
            {
                "id": "ca1",
                "task_id": "t1",
                "agent_id": None,
                "channel": "phone",
                "timestamp": datetime(2024, 2, 1, 15, 0),
                "status": "answered",
                "response": "Will pay Friday",
                "metadata": '{"escalated": false}',
            }
        ]

        attempts = await CustomerRepository(db).get_communication_history("c1", datetime(2023, 3, 15))

        assert "JOIN tasks" in db.query.await_args.args[0]
        assert attempts[0].status == ContactStatus.ANSWERED
        assert attempts[0].responded
        assert attempts[0].metadata == {"escalated": False}
