"""Pydantic request/response schemas for the Payments API.

These are external contracts, kept separate from the internal commands.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class ReprocessWebhooksRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000)


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class WebhookAckResponse(BaseModel):
    received: bool = True
    external_event_id: str
    duplicate: bool = False
    processed: bool = False
    error: str | None = None
    note: str | None = None


class WebhookEventResponse(BaseModel):
    external_event_id: str
    event_type: str
    error_message: str | None = None
    attempts: int
    created_at: datetime


class ReprocessResponse(BaseModel):
    attempted: int
    processed: int
    failed: int


class AnomalyResponse(BaseModel):
    anomaly_id: str
    kind: str
    external_event_id: str | None = None
    external_intent_id: str | None = None
    order_id: str | None = None
    details: str | None = None
    created_at: datetime


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str


class PaymentResponse(BaseModel):
    payment_id: str
    order_id: str
    external_intent_id: str
    amount: Decimal
    currency: str
    status: str
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
