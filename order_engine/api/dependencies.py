"""Request-scoped dependencies: authorization context and engine services."""
from functools import lru_cache
from typing import Optional

from fastapi import Header

from order_engine.core.auth import AuthContext
from order_engine.core.payment_engine import PaymentTransitionEngine
from order_engine.core.payouts import PayoutAccountService
from order_engine.core.publish import PublishWorkflow
from order_engine.monitoring.health import HealthCheck


async def get_auth_context(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-ID"),
    x_provider_id: Optional[str] = Header(default=None, alias="X-Provider-ID"),
) -> Optional[AuthContext]:
    """
    Build the authorization context from gateway-verified claims.

    Returns None for unauthenticated calls; the guard rejects them.
    """
    if not x_actor_id:
        return None
    return AuthContext(actor_id=x_actor_id, provider_id=x_provider_id or None)


@lru_cache()
def get_payment_engine() -> PaymentTransitionEngine:
    return PaymentTransitionEngine()


@lru_cache()
def get_publish_workflow() -> PublishWorkflow:
    return PublishWorkflow()


@lru_cache()
def get_payout_service() -> PayoutAccountService:
    return PayoutAccountService()


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()
