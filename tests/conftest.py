"""
Pytest configuration and fixtures for the outreach coordination service.
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.core.dependencies import (
    get_cache_gateway,
    get_context_engine,
    get_dispatch_gateway,
    get_persistence_gateway,
    get_task_coordinator,
)
from outreach_engine.core.exceptions import CacheError, DispatchError, PersistenceError
from outreach_engine.main import app
from outreach_engine.models.agent import Agent, AgentRegistration, AgentStatus, AgentType
from outreach_engine.models.common import ContactMethod
from outreach_engine.models.customer import (
    ContactAttempt,
    ContactStatus,
    Customer,
    PaymentRecord,
    PaymentStatus,
)
from outreach_engine.models.events import CoordinatorEvent
from outreach_engine.models.task import IN_FLIGHT_STATUSES, Task, TaskStatus
from outreach_engine.services.context_engine import ContextEngine
from outreach_engine.services.coordinator import TaskCoordinator


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeCache:
    """In-memory stand-in for the redis cache and notification gateway."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.published: List[CoordinatorEvent] = []
        self.fail_reads = False
        self.fail_writes = False
        self.fail_publish = False
        self.healthy = True

    async def get_json(self, key: str) -> Optional[Any]:
        if self.fail_reads:
            raise CacheError("Cache read failed: connection refused", key=key)
        raw = self.store.get(key)
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if self.fail_writes:
            raise CacheError("Cache write failed: connection refused", key=key)
        self.store[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> int:
        if self.fail_writes:
            raise CacheError("Cache delete failed: connection refused", key=key)
        return 1 if self.store.pop(key, None) is not None else 0

    async def publish(self, event: CoordinatorEvent) -> int:
        if self.fail_publish:
            raise CacheError("Publish failed: connection refused", key="outreach:events")
        self.published.append(event)
        return 1

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        pass

    def event_names(self) -> List[str]:
        return [event.name.value for event in self.published]


class FakeDatabase:
    def __init__(self):
        self.healthy = True

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        pass


class FakeCoordinationRepository:
    """In-memory agent and task tables."""

    def __init__(self):
        self.db = FakeDatabase()
        self.agents: Dict[str, Agent] = {}
        self.tasks: Dict[str, Task] = {}
        self.fail_writes = False

    def _check(self, operation: str) -> None:
        if self.fail_writes:
            raise PersistenceError("Database unavailable", operation=operation)

    async def insert_agent(self, agent: Agent) -> None:
        self._check("insert_agent")
        self.agents[agent.id] = agent.model_copy(deep=True)

    async def update_agent(self, agent: Agent, when: datetime) -> None:
        self._check("update_agent")
        self.agents[agent.id] = agent.model_copy(deep=True)

    async def load_active_agents(self) -> List[Agent]:
        return [
            agent.model_copy(deep=True)
            for agent in self.agents.values()
            if agent.status != AgentStatus.OFFLINE
        ]

    async def insert_task(self, task: Task) -> None:
        self._check("insert_task")
        self.tasks[task.id] = task.model_copy(deep=True)

    async def update_task(self, task: Task) -> None:
        self._check("update_task")
        self.tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def load_open_tasks(self) -> List[Task]:
        open_statuses = IN_FLIGHT_STATUSES | {TaskStatus.PENDING}
        return [task.model_copy(deep=True) for task in self.tasks.values() if task.status in open_statuses]


class FakeCustomerRepository:
    """In-memory customer, payment and contact history."""

    def __init__(self):
        self.db = FakeDatabase()
        self.customers: Dict[str, Customer] = {}
        self.payments: Dict[str, List[PaymentRecord]] = {}
        self.attempts: Dict[str, List[ContactAttempt]] = {}
        self.customer_calls = 0
        self.fail_customer = False
        self.fail_payments = False
        self.fail_attempts = False

    def add(
        self,
        customer: Customer,
        payments: Optional[List[PaymentRecord]] = None,
        attempts: Optional[List[ContactAttempt]] = None,
    ) -> None:
        self.customers[customer.id] = customer
        self.payments[customer.id] = payments or []
        self.attempts[customer.id] = attempts or []

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        self.customer_calls += 1
        if self.fail_customer:
            raise PersistenceError("Database unavailable", operation="get_customer")
        return self.customers.get(customer_id)

    async def get_payment_history(self, customer_id: str, since: datetime) -> List[PaymentRecord]:
        if self.fail_payments:
            raise PersistenceError("Database unavailable", operation="get_payment_history")
        return [r for r in self.payments.get(customer_id, []) if r.due_date >= since]

    async def get_communication_history(self, customer_id: str, since: datetime) -> List[ContactAttempt]:
        if self.fail_attempts:
            raise PersistenceError("Database unavailable", operation="get_communication_history")
        return [a for a in self.attempts.get(customer_id, []) if a.timestamp >= since]


class FakeDispatcher:
    """Records dispatched tasks; can be told to reject the next calls."""

    def __init__(self):
        self.dispatched: List[Task] = []
        self.failures_remaining = 0

    async def dispatch(self, task: Task) -> Dict[str, Any]:
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise DispatchError("phone_executor", "HTTP 503: unavailable", status_code=503)
        self.dispatched.append(task.model_copy(deep=True))
        return {"accepted": True}

    def get_status(self) -> Dict[str, Any]:
        return {"phone": {"state": "closed"}}

    async def close(self) -> None:
        pass


def make_registration(agent_type: AgentType = AgentType.PHONE, max_concurrent_tasks: int = 2) -> AgentRegistration:
    return AgentRegistration(
        type=agent_type,
        capabilities=["collections"],
        max_concurrent_tasks=max_concurrent_tasks,
    )


def make_payments(now: datetime, count: int, days_late: Optional[float], months_apart: int = 1) -> List[PaymentRecord]:
    """Monthly paid invoices, newest first; ``days_late=None`` leaves them unpaid."""
    records = []
    for i in range(count):
        due = now - timedelta(days=30 * months_apart * (i + 1))
        paid = due + timedelta(days=days_late) if days_late is not None else None
        records.append(
            PaymentRecord(
                id=f"pay-{i}",
                amount=500.0,
                due_date=due,
                paid_date=paid,
                status=PaymentStatus.PAID if paid is not None else PaymentStatus.OVERDUE,
                invoice_number=f"INV-{1000 + i}",
            )
        )
    return records


def make_attempt(
    attempt_id: str,
    timestamp: datetime,
    status: ContactStatus = ContactStatus.REPLIED,
    channel: ContactMethod = ContactMethod.EMAIL,
    response: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ContactAttempt:
    return ContactAttempt(
        id=attempt_id,
        channel=channel,
        timestamp=timestamp,
        status=status,
        response=response,
        metadata=metadata,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings with short loops and a fixed retry backoff."""
    return Settings(
        queue_batch_size=10,
        task_timeout_seconds=600,
        task_retry_base_delay_seconds=5.0,
        task_retry_max_delay_seconds=60.0,
        context_cache_expiry_minutes=30,
    )


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def fake_repository() -> FakeCoordinationRepository:
    return FakeCoordinationRepository()


@pytest.fixture
def fake_customers() -> FakeCustomerRepository:
    return FakeCustomerRepository()


@pytest.fixture
def fake_dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def coordinator(fake_repository, fake_cache, fake_dispatcher, settings, clock) -> TaskCoordinator:
    return TaskCoordinator(
        repository=fake_repository,
        cache=fake_cache,
        dispatcher=fake_dispatcher,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def context_engine(fake_customers, fake_cache, settings, clock) -> ContextEngine:
    return ContextEngine(customers=fake_customers, cache=fake_cache, settings=settings, clock=clock)


@pytest.fixture
def sample_customer(clock) -> Customer:
    return Customer(
        id="cust-1",
        company_name="Acme Widgets",
        contact_name="Jordan Lee",
        email="ap@acme.example",
        phone="+15555550100",
        preferred_contact_method=ContactMethod.EMAIL,
        created_at=clock() - timedelta(days=3 * 365),
        updated_at=clock(),
    )


@pytest.fixture
def client(coordinator, context_engine, fake_cache, fake_repository, fake_dispatcher) -> Generator[TestClient, None, None]:
    """
    Test client wired to the in-memory engines.

    Startup hooks are not run, so no background loops start.
    """
    app.dependency_overrides[get_task_coordinator] = lambda: coordinator
    app.dependency_overrides[get_context_engine] = lambda: context_engine
    app.dependency_overrides[get_cache_gateway] = lambda: fake_cache
    app.dependency_overrides[get_persistence_gateway] = lambda: fake_repository.db
    app.dependency_overrides[get_dispatch_gateway] = lambda: fake_dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_prefix() -> str:
    """Get the API prefix from settings."""
    return get_settings().api_prefix
