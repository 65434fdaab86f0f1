"""Customer context and risk engine with two-layer caching."""

import asyncio
import calendar
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.core.exceptions import CacheError, PersistenceError
from outreach_engine.core.logging import correlation_context, get_logger, performance_timing
from outreach_engine.models.common import utc_now
from outreach_engine.models.context import CustomerContext
from outreach_engine.models.customer import ContactAttempt, PaymentRecord
from outreach_engine.services.cache import CacheGateway
from outreach_engine.services.repository import CustomerRepository
from outreach_engine.utils.behavior_analysis import BehaviorAnalyzer
from outreach_engine.utils.recommendations import generate_recommendations
from outreach_engine.utils.risk_scoring import RISK_SCORE_WEIGHTS, RiskScorer

logger = get_logger(__name__)


def _months_before(moment: datetime, months: int) -> datetime:
    """Same day ``months`` calendar months earlier, clamped to the month's end."""
    year, month = divmod(moment.year * 12 + moment.month - 1 - months, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class ContextEngine:
    """
    Builds and caches CustomerContext objects.

    Lookups check the in-process map, then the shared cache, and rebuild from
    the store when both miss or are older than the expiry window.
    """

    def __init__(
        self,
        customers: CustomerRepository,
        cache: CacheGateway,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        analyzer: Optional[BehaviorAnalyzer] = None,
        scorer: Optional[RiskScorer] = None,
    ):
        self.settings = settings or get_settings()
        self.customers = customers
        self.cache = cache
        self.clock = clock
        self.analyzer = analyzer or BehaviorAnalyzer(self.settings.min_data_points_for_analysis)
        self.scorer = scorer or RiskScorer()
        self.expiry = timedelta(minutes=self.settings.context_cache_expiry_minutes)
        self.is_initialized = False
        self._contexts: Dict[str, CustomerContext] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self._dependencies: Dict[str, bool] = {}

    @staticmethod
    def cache_key(customer_id: str) -> str:
        return f"context:{customer_id}"

    async def initialize(self) -> None:
        """Check dependencies and start the periodic cache cleanup."""
        self._dependencies = {
            "persistence": await self.customers.db.health_check(),
            "cache": await self.cache.health_check(),
        }
        for name, healthy in self._dependencies.items():
            if not healthy:
                logger.warning("Context engine dependency unavailable", dependency=name)

        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.is_initialized = True
        logger.info("Context engine initialized", dependencies=self._dependencies)

    async def shutdown(self) -> None:
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        self._contexts.clear()
        self.is_initialized = False
        logger.info("Context engine shut down")

    async def get_customer_context(self, customer_id: str, force_refresh: bool = False) -> Optional[CustomerContext]:
        """
        Return the customer's context, rebuilding it when stale.

        Args:
            customer_id: Customer identifier
            force_refresh: Skip both cache layers and rebuild

        Returns:
            CustomerContext, or None when the customer does not exist

        Raises:
            PersistenceError: The customer lookup itself failed
        """
        with correlation_context(customer_id=customer_id):
            if not force_refresh:
                cached = await self._cached_context(customer_id)
                if cached is not None:
                    return cached

            with performance_timing("build_customer_context", customer_id=customer_id):
                context = await self._build_context(customer_id)
            if context is None:
                logger.info("Customer not found")
                return None

            self._contexts[customer_id] = context
            try:
                await self.cache.set_json(
                    self.cache_key(customer_id),
                    context.model_dump(mode="json"),
                    int(self.expiry.total_seconds()),
                )
            except CacheError as e:
                logger.warning("Could not cache customer context", error=e.detail)
            return context

    async def invalidate_customer_context(self, customer_id: str) -> None:
        """Evict the context from both cache layers."""
        self._contexts.pop(customer_id, None)
        await self.cache.delete(self.cache_key(customer_id))
        logger.info("Invalidated customer context", customer_id=customer_id)

    def cleanup_expired(self) -> int:
        now = self.clock()
        expired = [cid for cid, ctx in self._contexts.items() if not self._is_fresh(ctx, now)]
        for customer_id in expired:
            del self._contexts[customer_id]
        logger.debug("Context cache cleanup completed", removed=len(expired), active=len(self._contexts))
        return len(expired)

    def get_context_stats(self) -> Dict[str, Any]:
        return {
            "memory_cache_size": len(self._contexts),
            "cache_expiry_seconds": int(self.expiry.total_seconds()),
            "analysis_params": {
                "payment_history_months": self.settings.payment_history_months,
                "communication_history_months": self.settings.communication_history_months,
                "min_data_points_for_analysis": self.settings.min_data_points_for_analysis,
                "risk_score_weights": dict(RISK_SCORE_WEIGHTS),
            },
            "dependencies": dict(self._dependencies),
            "is_initialized": self.is_initialized,
        }

    def _is_fresh(self, context: CustomerContext, now: datetime) -> bool:
        return now - context.last_updated < self.expiry

    async def _cached_context(self, customer_id: str) -> Optional[CustomerContext]:
        now = self.clock()
        local = self._contexts.get(customer_id)
        if local is not None and self._is_fresh(local, now):
            return local

        try:
            data = await self.cache.get_json(self.cache_key(customer_id))
        except CacheError as e:
            logger.warning("Context cache read failed, rebuilding", error=e.detail)
            return None
        if data is None:
            return None

        try:
            shared = CustomerContext.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding malformed cached context", error=str(e))
            return None
        if not self._is_fresh(shared, now):
            return None

        self._contexts[customer_id] = shared
        return shared

    async def _build_context(self, customer_id: str) -> Optional[CustomerContext]:
        customer = await self.customers.get_customer(customer_id)
        if customer is None:
            return None

        now = self.clock()
        payments = await self._payment_history(customer_id, now)
        attempts = await self._communication_history(customer_id, now)

        behavior = self.analyzer.analyze(payments, attempts)
        risk = self.scorer.assess(customer, payments, behavior, now)
        recommendations = generate_recommendations(behavior, risk, current_hour=now.hour)

        logger.info(
            "Built customer context",
            risk_score=risk.risk_score,
            risk_level=risk.current_risk.value,
            payments=len(payments),
            contact_attempts=len(attempts),
        )
        return CustomerContext(
            customer=customer,
            payment_history=payments,
            communication_history=attempts,
            behavior_analysis=behavior,
            risk_assessment=risk,
            recommendations=recommendations,
            last_updated=now,
        )

    async def _payment_history(self, customer_id: str, now: datetime) -> List[PaymentRecord]:
        since = _months_before(now, self.settings.payment_history_months)
        try:
            return await self.customers.get_payment_history(customer_id, since)
        except PersistenceError as e:
            logger.error("Payment history unavailable, analyzing without it", error=e.detail)
            return []

    async def _communication_history(self, customer_id: str, now: datetime) -> List[ContactAttempt]:
        since = _months_before(now, self.settings.communication_history_months)
        try:
            return await self.customers.get_communication_history(customer_id, since)
        except PersistenceError as e:
            logger.error("Communication history unavailable, analyzing without it", error=e.detail)
            return []

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.context_cleanup_interval_seconds)
                self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error during context cache cleanup", error=str(e), exc_info=True)
