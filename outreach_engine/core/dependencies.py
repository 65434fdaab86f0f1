"""
Dependency injection for FastAPI application.

Provides cached factory functions for the gateways and both engines so the
app and its routes share one instance of each.
"""

from functools import lru_cache

from outreach_engine.core.config import get_settings
from outreach_engine.services.cache import CacheGateway
from outreach_engine.services.context_engine import ContextEngine
from outreach_engine.services.coordinator import TaskCoordinator
from outreach_engine.services.database import PersistenceGateway
from outreach_engine.services.dispatch import WorkDispatchGateway, build_executor_clients
from outreach_engine.services.repository import CoordinationRepository, CustomerRepository


@lru_cache()
def get_persistence_gateway() -> PersistenceGateway:
    """Get persistence gateway."""
    return PersistenceGateway()


@lru_cache()
def get_cache_gateway() -> CacheGateway:
    """Get cache and notification gateway."""
    return CacheGateway()


@lru_cache()
def get_dispatch_gateway() -> WorkDispatchGateway:
    """Get work dispatch gateway with one client per executor."""
    return WorkDispatchGateway(build_executor_clients(get_settings()))


@lru_cache()
def get_task_coordinator() -> TaskCoordinator:
    """Get task coordination engine."""
    return TaskCoordinator(
        repository=CoordinationRepository(get_persistence_gateway()),
        cache=get_cache_gateway(),
        dispatcher=get_dispatch_gateway(),
        settings=get_settings(),
    )


@lru_cache()
def get_context_engine() -> ContextEngine:
    """Get customer context and risk engine."""
    return ContextEngine(
        customers=CustomerRepository(get_persistence_gateway()),
        cache=get_cache_gateway(),
        settings=get_settings(),
    )
