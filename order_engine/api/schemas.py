"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConfirmOrderRequest(BaseModel):
    """Request schema for confirming an order's payment."""

    payment_intent_id: Optional[str] = Field(
        default=None, description="External payment reference (Stripe PaymentIntent ID)"
    )

    model_config = {"json_schema_extra": {"examples": [{"payment_intent_id": "pi_1234567890"}]}}


class OrderActionRequest(BaseModel):
    """Request schema for cancel/refund."""

    provider_id: Optional[str] = Field(
        default=None,
        description="Provider owning the order; required when the caller has no provider claim",
    )


class PublishProductRequest(BaseModel):
    product_draft_path: Optional[str] = Field(
        default=None, description="Path of the draft, e.g. providers/{id}/productDrafts/{id}"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [{"product_draft_path": "providers/prov_1/productDrafts/prod_1"}]
        }
    }


class LinkPayoutAccountRequest(BaseModel):
    """External account parameters passed through to the processor."""

    model_config = ConfigDict(extra="allow")

    external_account: Any = Field(..., description="Bank account or card token / details")
    default_for_currency: Optional[bool] = None


class OperationResponse(BaseModel):
    """Uniform envelope: exactly one of `result` or `error` is set."""

    result: Optional[Any] = Field(default=None, description="Operation result")
    error: Optional[Dict[str, Any]] = Field(default=None, description="Expected failure")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
