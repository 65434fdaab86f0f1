"""
Tests for circuit breaker implementation.
"""
import httpx
import pytest

from outreach_engine.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    ServiceClient,
)
from outreach_engine.core.exceptions import DispatchError, ServiceUnavailableError


class TestCircuitBreakerConfig:
    """Test circuit breaker configuration."""

    def test_default_config(self):
        """Test default configuration values."""
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.success_threshold == 3
        assert config.timeout == 60
        assert config.half_open_max_calls == 5


class TestCircuitBreaker:
    """Test circuit breaker functionality."""

    @pytest.fixture
    def circuit_breaker(self):
        """Create a circuit breaker for testing."""
        config = CircuitBreakerConfig(failure_threshold=3, success_threshold=2, timeout=60)
        return CircuitBreaker("Test Service", config)

    @pytest.fixture
    def failing_function(self):
        """Create a function that always fails."""
        async def fail_func():
            raise DispatchError("Test Service", "Service unavailable", status_code=503)
        return fail_func

    @pytest.fixture
    def successful_function(self):
        """Create a function that always succeeds."""
        async def success_func():
            return {"data": "success"}
        return success_func

    async def _open(self, circuit_breaker, failing_function):
        for _ in range(3):
            with pytest.raises(DispatchError):
                await circuit_breaker.call_async(failing_function)

    @pytest.mark.asyncio
    async def test_initial_closed_state(self, circuit_breaker):
        """Test circuit breaker starts in closed state."""
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0
        assert circuit_breaker.get_status()["is_available"] is True

    @pytest.mark.asyncio
    async def test_successful_call_resets_failure_count(self, circuit_breaker, failing_function, successful_function):
        """Test successful calls reset failure count."""
        for _ in range(2):
            with pytest.raises(DispatchError):
                await circuit_breaker.call_async(failing_function)

        result = await circuit_breaker.call_async(successful_function)

        assert result == {"data": "success"}
        assert circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failure_threshold(self, circuit_breaker, failing_function):
        """Test circuit opens after failure threshold is reached."""
        await self._open(circuit_breaker, failing_function)

        assert circuit_breaker.state == CircuitState.OPEN

        with pytest.raises(ServiceUnavailableError):
            await circuit_breaker.call_async(failing_function)

        status = circuit_breaker.get_status()
        assert status["state"] == "open"
        assert status["metrics"]["circuit_open_count"] == 1
        assert status["metrics"]["failed_calls"] == 3

    @pytest.mark.asyncio
    async def test_half_open_closes_after_successes(self, circuit_breaker, failing_function, successful_function):
        """Test circuit closes after success threshold in half-open state."""
        await self._open(circuit_breaker, failing_function)
        circuit_breaker.last_failure_time -= 61

        await circuit_breaker.call_async(successful_function)
        assert circuit_breaker.state == CircuitState.HALF_OPEN

        await circuit_breaker.call_async(successful_function)
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, circuit_breaker, failing_function):
        """Test a failed half-open trial call reopens the circuit."""
        await self._open(circuit_breaker, failing_function)
        circuit_breaker.last_failure_time -= 61

        with pytest.raises(DispatchError):
            await circuit_breaker.call_async(failing_function)

        assert circuit_breaker.state == CircuitState.OPEN
        assert circuit_breaker.metrics.circuit_open_count == 2


class TestServiceClient:
    """Test executor HTTP client."""

    @pytest.mark.asyncio
    async def test_post_returns_json(self):
        """Test successful POST."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(202, json={"accepted": True})

        client = ServiceClient("email", "http://email-executor/", transport=httpx.MockTransport(handler))
        try:
            result = await client.post("tasks", json={"task_id": "t1"})
        finally:
            await client.close()

        assert result == {"accepted": True}
        assert seen == [("POST", "/tasks")]

    @pytest.mark.asyncio
    async def test_http_error_raises_dispatch_error(self):
        """Test non-2xx responses become dispatch errors."""
        client = ServiceClient(
            "sms",
            "http://sms-executor",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        try:
            with pytest.raises(DispatchError) as exc_info:
                await client.post("tasks", json={})
        finally:
            await client.close()

        assert exc_info.value.status_code == 500
        assert exc_info.value.service_name == "sms"
        assert client.get_circuit_status()["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test plain text responses are wrapped."""
        client = ServiceClient(
            "phone",
            "http://phone-executor",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="queued")),
        )
        try:
            result = await client.post("tasks")
        finally:
            await client.close()

        assert result == {"data": "queued", "status_code": 200}
