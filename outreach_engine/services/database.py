"""Persistence gateway on an async SQLAlchemy engine."""

from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from outreach_engine.core.config import get_settings
from outreach_engine.core.exceptions import PersistenceError
from outreach_engine.core.logging import get_logger
from outreach_engine.core.retry import create_async_retry_decorator, get_gateway_retry_config

logger = get_logger(__name__)


class PersistenceGateway:
    """Parameterized query/execute interface over the relational store."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        settings = get_settings()
        self.engine = engine or create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=10,
            echo=False,
        )
        retry_config = get_gateway_retry_config(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )
        self._retry = create_async_retry_decorator(retry_config, service_name="persistence")

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""

        @self._retry
        async def _run() -> List[Dict[str, Any]]:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                return [dict(row) for row in result.mappings().all()]

        try:
            return await _run()
        except (SQLAlchemyError, ConnectionError, TimeoutError, OSError) as e:
            logger.error("Persistence query failed", error=str(e), sql=_first_line(sql))
            raise PersistenceError(f"Query failed: {e}", operation="query") from e

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run a write statement in its own transaction; returns affected rows."""

        @self._retry
        async def _run() -> int:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                return result.rowcount

        try:
            return await _run()
        except (SQLAlchemyError, ConnectionError, TimeoutError, OSError) as e:
            logger.error("Persistence write failed", error=str(e), sql=_first_line(sql))
            raise PersistenceError(f"Execute failed: {e}", operation="execute") from e

    async def health_check(self) -> bool:
        try:
            await self.query("SELECT 1")
            return True
        except PersistenceError:
            return False

    async def close(self) -> None:
        """Dispose of the engine and close all connections."""
        await self.engine.dispose()


def _first_line(sql: str) -> str:
    return sql.strip().splitlines()[0] if sql.strip() else ""

