"""
Tests for the customer context and risk engine.
"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_attempt, make_payments
from outreach_engine.core.exceptions import CacheError, PersistenceError
from outreach_engine.models.common import RiskLevel
from outreach_engine.services.context_engine import ContextEngine, _months_before


class TestMonthsBefore:

    def test_clamps_to_month_end(self):
        moment = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)

        assert _months_before(moment, 1) == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)

    def test_crosses_year_boundary(self):
        moment = datetime(2024, 3, 15, tzinfo=timezone.utc)

        assert _months_before(moment, 24) == datetime(2022, 3, 15, tzinfo=timezone.utc)
        assert _months_before(moment, 5) == datetime(2023, 10, 15, tzinfo=timezone.utc)


class TestGetCustomerContext:

    @pytest.mark.asyncio
    async def test_unknown_customer_returns_none(self, context_engine, fake_cache):
        assert await context_engine.get_customer_context("nobody") is None
        assert fake_cache.store == {}

    @pytest.mark.asyncio
    async def test_builds_and_caches_context(self, context_engine, fake_customers, fake_cache, sample_customer, clock):
        fake_customers.add(sample_customer, payments=make_payments(clock(), 12, days_late=10))

        context = await context_engine.get_customer_context(sample_customer.id)

        assert context.customer.id == sample_customer.id
        assert len(context.payment_history) == 12
        assert context.behavior_analysis.average_payment_delay == 10
        assert context.last_updated == clock()
        key = ContextEngine.cache_key(sample_customer.id)
        assert key in fake_cache.store
        assert fake_cache.ttls[key] == 1800

    @pytest.mark.asyncio
    async def test_year_of_late_payments_is_at_least_medium_risk(
        self, context_engine, fake_customers, sample_customer, clock
    ):
        """Twelve monthly payments each ten days late."""
        fake_customers.add(sample_customer, payments=make_payments(clock(), 12, days_late=10))

        context = await context_engine.get_customer_context(sample_customer.id)

        risk = context.risk_assessment
        assert risk.current_risk in (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)
        assert risk.risk_score == 63
        assert context.recommendations[0].action == "Offer payment plan or settlement discount"

    @pytest.mark.asyncio
    async def test_memory_cache_hit_skips_store(self, context_engine, fake_customers, sample_customer, clock):
        fake_customers.add(sample_customer)
        first = await context_engine.get_customer_context(sample_customer.id)
        clock.advance(minutes=10)

        second = await context_engine.get_customer_context(sample_customer.id)

        assert second is first
        assert fake_customers.customer_calls == 1

    @pytest.mark.asyncio
    async def test_shared_cache_hit_across_instances(
        self, context_engine, fake_customers, fake_cache, sample_customer, settings, clock
    ):
        fake_customers.add(sample_customer, payments=make_payments(clock(), 4, days_late=2))
        built = await context_engine.get_customer_context(sample_customer.id)
        other = ContextEngine(customers=fake_customers, cache=fake_cache, settings=settings, clock=clock)

        loaded = await other.get_customer_context(sample_customer.id)

        assert fake_customers.customer_calls == 1
        assert loaded == built

    @pytest.mark.asyncio
    async def test_expired_context_is_rebuilt(self, context_engine, fake_customers, sample_customer, clock):
        fake_customers.add(sample_customer)
        await context_engine.get_customer_context(sample_customer.id)
        clock.advance(minutes=31)

        context = await context_engine.get_customer_context(sample_customer.id)

        assert fake_customers.customer_calls == 2
        assert context.last_updated == clock()

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_caches(self, context_engine, fake_customers, sample_customer):
        fake_customers.add(sample_customer)
        await context_engine.get_customer_context(sample_customer.id)

        await context_engine.get_customer_context(sample_customer.id, force_refresh=True)

        assert fake_customers.customer_calls == 2

    @pytest.mark.asyncio
    async def test_history_failure_analyzed_as_empty(self, context_engine, fake_customers, sample_customer, clock):
        fake_customers.add(
            sample_customer,
            payments=make_payments(clock(), 6, days_late=20),
            attempts=[make_attempt("c1", clock() - timedelta(days=3))],
        )
        fake_customers.fail_payments = True

        context = await context_engine.get_customer_context(sample_customer.id)

        assert context.payment_history == []
        assert len(context.communication_history) == 1
        assert context.behavior_analysis.payment_patterns == []

    @pytest.mark.asyncio
    async def test_customer_lookup_failure_propagates(self, context_engine, fake_customers, sample_customer):
        fake_customers.add(sample_customer)
        fake_customers.fail_customer = True

        with pytest.raises(PersistenceError):
            await context_engine.get_customer_context(sample_customer.id)

    @pytest.mark.asyncio
    async def test_cache_failures_do_not_block_build(self, context_engine, fake_customers, fake_cache, sample_customer):
        fake_customers.add(sample_customer)
        fake_cache.fail_reads = True
        fake_cache.fail_writes = True

        context = await context_engine.get_customer_context(sample_customer.id)

        assert context is not None
        assert context_engine.get_context_stats()["memory_cache_size"] == 1

    @pytest.mark.asyncio
    async def test_history_window_excludes_old_records(self, context_engine, fake_customers, sample_customer, clock):
        old = make_payments(clock() - timedelta(days=800), 3, days_late=30)
        recent = make_payments(clock(), 3, days_late=0)
        fake_customers.add(sample_customer, payments=recent + old)

        context = await context_engine.get_customer_context(sample_customer.id)

        assert len(context.payment_history) == 3


class TestCacheMaintenance:

    @pytest.mark.asyncio
    async def test_invalidate_clears_both_layers(self, context_engine, fake_customers, fake_cache, sample_customer):
        fake_customers.add(sample_customer)
        await context_engine.get_customer_context(sample_customer.id)

        await context_engine.invalidate_customer_context(sample_customer.id)

        assert ContextEngine.cache_key(sample_customer.id) not in fake_cache.store
        assert context_engine.get_context_stats()["memory_cache_size"] == 0

    @pytest.mark.asyncio
    async def test_invalidate_propagates_cache_error(self, context_engine, fake_cache):
        fake_cache.fail_writes = True

        with pytest.raises(CacheError):
            await context_engine.invalidate_customer_context("cust-1")

    @pytest.mark.asyncio
    async def test_cleanup_removes_stale_entries(self, context_engine, fake_customers, sample_customer, clock):
        fake_customers.add(sample_customer)
        await context_engine.get_customer_context(sample_customer.id)

        assert context_engine.cleanup_expired() == 0
        clock.advance(minutes=45)
        assert context_engine.cleanup_expired() == 1
        assert context_engine.get_context_stats()["memory_cache_size"] == 0

    @pytest.mark.asyncio
    async def test_initialize_records_dependency_health(self, context_engine, fake_customers, fake_cache):
        fake_cache.healthy = False

        await context_engine.initialize()
        try:
            stats = context_engine.get_context_stats()
            assert stats["is_initialized"] is True
            assert stats["dependencies"] == {"persistence": True, "cache": False}
            assert stats["cache_expiry_seconds"] == 1800
            assert stats["analysis_params"]["payment_history_months"] == 24
        finally:
            await context_engine.shutdown()

        assert context_engine.get_context_stats()["is_initialized"] is False
