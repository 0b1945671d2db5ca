"""
API routes for order payment transitions, catalog publishing and payouts.

Expected failures (conflicts, processor errors) come back as HTTP 200 with
an `{"error": ...}` envelope; guard failures become HTTP errors.
"""
from typing import Any, Awaitable, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from order_engine.core.auth import AuthContext
from order_engine.core.errors import OrderEngineError
from order_engine.core.payment_engine import PaymentTransitionEngine
from order_engine.core.payouts import PayoutAccountService
from order_engine.core.publish import PublishWorkflow
from order_engine.monitoring.health import HealthCheck

from .dependencies import (
    get_auth_context,
    get_health_check,
    get_payment_engine,
    get_payout_service,
    get_publish_workflow,
)
from .schemas import (
    ConfirmOrderRequest,
    HealthCheckResponse,
    LinkPayoutAccountRequest,
    OperationResponse,
    OrderActionRequest,
    PublishProductRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
product_router = APIRouter(prefix="/products", tags=["products"])
account_router = APIRouter(prefix="/accounts", tags=["accounts"])
monitoring_router = APIRouter(tags=["monitoring"])


async def _envelope(operation: str, call: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        return await call
    except OrderEngineError as e:
        logger.warning(
            "api_request_rejected",
            operation=operation,
            error_code=e.code,
            error=e.message,
        )
        raise HTTPException(status_code=e.http_status, detail=e.message)


@order_router.post(
    "/{order_id}/confirm",
    response_model=OperationResponse,
    response_model_exclude_none=True,
    summary="Confirm an order",
    description="Capture payment for a processing order and split revenue to mediators",
)
async def confirm_order(
    order_id: str,
    request: ConfirmOrderRequest,
    auth: Optional[AuthContext] = Depends(get_auth_context),
    engine: PaymentTransitionEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await _envelope(
        "confirm", engine.confirm_order(auth, order_id, request.payment_intent_id)
    )


@order_router.post(
    "/{order_id}/cancel",
    response_model=OperationResponse,
    response_model_exclude_none=True,
    summary="Cancel an order",
)
async def cancel_order(
    order_id: str,
    request: OrderActionRequest,
    auth: Optional[AuthContext] = Depends(get_auth_context),
    engine: PaymentTransitionEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await _envelope("cancel", engine.cancel_order(auth, order_id, request.provider_id))


@order_router.post(
    "/{order_id}/refund",
    response_model=OperationResponse,
    response_model_exclude_none=True,
    summary="Refund an order",
)
async def refund_order(
    order_id: str,
    request: OrderActionRequest,
    auth: Optional[AuthContext] = Depends(get_auth_context),
    engine: PaymentTransitionEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await _envelope("refund", engine.refund_order(auth, order_id, request.provider_id))


@product_router.post(
    "/publish",
    response_model=OperationResponse,
    response_model_exclude_none=True,
    summary="Publish a product draft",
    description="Promote a product draft and its SKU drafts to the live catalog",
)
async def publish_product(
    request: PublishProductRequest,
    auth: Optional[AuthContext] = Depends(get_auth_context),
    workflow: PublishWorkflow = Depends(get_publish_workflow),
) -> Dict[str, Any]:
    return await _envelope("publish", workflow.publish(auth, request.product_draft_path))


@account_router.post(
    "/{actor_id}/external-accounts",
    response_model=OperationResponse,
    response_model_exclude_none=True,
    summary="Link a payout account",
)
async def link_payout_account(
    actor_id: str,
    request: LinkPayoutAccountRequest,
    auth: Optional[AuthContext] = Depends(get_auth_context),
    service: PayoutAccountService = Depends(get_payout_service),
) -> Dict[str, Any]:
    return await _envelope(
        "link_payout_account",
        service.link_payout_account(auth, actor_id, request.model_dump(exclude_none=True)),
    )


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe; 503 until the database answers."""
    try:
        result = await health_check.readiness()
    except Exception as e:
        logger.error("readiness_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "error": str(e)},
        )
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
