"""
Customer context endpoints.
"""
import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from outreach_engine.core.dependencies import get_context_engine
from outreach_engine.core.exceptions import NotFoundAPIError, OutreachError, map_domain_error
from outreach_engine.models.context import CustomerContext
from outreach_engine.services.context_engine import ContextEngine

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("/{customer_id}/context", response_model=CustomerContext)
async def get_customer_context(
    customer_id: str,
    force_refresh: bool = Query(False, description="Rebuild instead of reading the cache"),
    context_engine: ContextEngine = Depends(get_context_engine),
):
    """
    Get the customer's behavior analysis, risk assessment and recommendations.

    Args:
        customer_id: Customer identifier
        force_refresh: Skip both cache layers
        context_engine: Customer context engine instance

    Returns:
        CustomerContext

    Raises:
        BaseAPIException: 404 for an unknown customer, 503 when the store is down
    """
    try:
        context = await context_engine.get_customer_context(customer_id, force_refresh=force_refresh)
    except OutreachError as e:
        logger.error("Customer context lookup failed", customer_id=customer_id, error=e.detail)
        raise map_domain_error(e)

    if context is None:
        raise NotFoundAPIError(f"Customer not found: {customer_id}", customer_id=customer_id)
    return context


@router.delete("/{customer_id}/context", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_customer_context(
    customer_id: str,
    context_engine: ContextEngine = Depends(get_context_engine),
):
    """Evict the cached context so the next read rebuilds it."""
    try:
        await context_engine.invalidate_customer_context(customer_id)
    except OutreachError as e:
        raise map_domain_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
