"""FastAPI routes for the Payments context: webhooks, anomalies, gateway controls."""

import json
from dataclasses import asdict

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from ordering.order.order import get_order
from payments.api.schemas import (
    AnomalyResponse,
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    PaymentResponse,
    ReprocessResponse,
    ReprocessWebhooksRequest,
    WebhookAckResponse,
    WebhookEventResponse,
)
from payments.gateway import get_gateway
from payments.gateway.fake_adapter import FakeGateway
from payments.payment.payment import find_payment_for_order, list_anomalies
from payments.webhook.ingestion import IngestWebhook, failed_webhooks, ingest_webhook, reprocess_pending
from shared.config import get_settings
from shared.database import unit_of_work
from shared.exceptions import PaymentNotFound

# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payment", tags=["payments"])


@payment_router.post("/webhook", response_model=WebhookAckResponse)
async def receive_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
) -> WebhookAckResponse:
    """Accept a payment gateway event.

    Once the event is stored the delivery is acknowledged, even when
    applying it fails; failed events are retried by reprocessing.
    """
    raw_body = await request.body()
    gateway = get_gateway()
    if not gateway.verify_webhook_signature(raw_body, x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("id"), str) or not isinstance(
        payload.get("type"), str
    ):
        raise HTTPException(status_code=400, detail="Webhook body needs string 'id' and 'type' fields")

    command = IngestWebhook(external_event_id=payload["id"], event_type=payload["type"], payload=payload)
    ack = await run_in_threadpool(ingest_webhook, command)
    return WebhookAckResponse(**asdict(ack))


@payment_router.get("/order/{order_id}", response_model=PaymentResponse)
def get_order_payment(order_id: str) -> PaymentResponse:
    """The payment opened for an order, for reconciling it against the gateway."""
    with unit_of_work() as session:
        get_order(session, order_id)
        payment = find_payment_for_order(session, order_id)
        if payment is None:
            raise PaymentNotFound({"order_id": ["No payment for this order"]}, order_id=order_id)
        return PaymentResponse(
            payment_id=payment.id,
            order_id=payment.order_id,
            external_intent_id=payment.external_intent_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            failure_reason=payment.failure_reason,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )


@payment_router.get("/webhooks/failed", response_model=list[WebhookEventResponse])
def list_failed_webhooks(limit: int = Query(default=100, ge=1, le=1000)) -> list[WebhookEventResponse]:
    return [
        WebhookEventResponse(
            external_event_id=event.external_event_id,
            event_type=event.event_type,
            error_message=event.error_message,
            attempts=event.attempts,
            created_at=event.created_at,
        )
        for event in failed_webhooks(limit)
    ]


@payment_router.post("/webhooks/reprocess", response_model=ReprocessResponse)
def reprocess_webhooks(body: ReprocessWebhooksRequest | None = None) -> ReprocessResponse:
    """Retry stored events that were never applied."""
    limit = body.limit if body else 100
    return ReprocessResponse(**asdict(reprocess_pending(limit)))


@payment_router.get("/anomalies", response_model=list[AnomalyResponse])
def get_anomalies(limit: int = Query(default=100, ge=1, le=1000)) -> list[AnomalyResponse]:
    with unit_of_work() as session:
        return [
            AnomalyResponse(
                anomaly_id=anomaly.id,
                kind=anomaly.kind,
                external_event_id=anomaly.external_event_id,
                external_intent_id=anomaly.external_intent_id,
                order_id=anomaly.order_id,
                details=anomaly.details,
                created_at=anomaly.created_at,
            )
            for anomaly in list_anomalies(session, limit)
        ]


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only).

    Lets manual API testing toggle whether intents and refunds succeed.
    """
    if get_settings().env == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )
