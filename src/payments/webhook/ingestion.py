"""Webhook ingestion: idempotent, durable processing of gateway events.

1. A delivery whose ``external_event_id`` is already stored is acknowledged
   and ignored.
2. The raw event is persisted in its own transaction before anything else.
3. The payload is parsed into a typed event and dispatched to settlement in
   one transaction that also locks the stored event, re-checks
   ``processed`` and sets it. Side effects therefore happen at most once,
   even when the same event is delivered concurrently.
4. When dispatch fails the error is written to the stored event, which stays
   unprocessed for ``reprocess_pending`` to retry, and the delivery is still
   acknowledged.

Only a failure to persist the raw event surfaces to the caller, so the
gateway redelivers it.
"""

from dataclasses import asdict, dataclass

import structlog
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from payments.payment.payment import AnomalyKind, has_anomaly, record_anomaly
from payments.payment.settlement import SettlementOutcome, settle_failure, settle_processing, settle_success
from payments.webhook.events import (
    PaymentIntentCanceled,
    PaymentIntentFailed,
    PaymentIntentProcessing,
    PaymentIntentSucceeded,
    UnknownEventType,
    parse_event,
)
from payments.webhook.webhook import WebhookEvent, find_event, unprocessed_events
from shared.database import new_id, retry_on_conflict, unit_of_work, utcnow
from shared.exceptions import DomainError, DuplicateWebhookEvent, PaymentMismatch, PaymentNotFound

logger = structlog.get_logger(__name__)


class IngestWebhook(BaseModel):
    external_event_id: str
    event_type: str
    payload: dict


@dataclass(frozen=True)
class WebhookAck:
    external_event_id: str
    duplicate: bool = False
    processed: bool = False
    error: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class ReprocessReport:
    attempted: int
    processed: int
    failed: int


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------
@retry_on_conflict
def _store(command: IngestWebhook) -> None:
    """Persist the raw event; raises ``DuplicateWebhookEvent`` when it is already recorded."""
    duplicate = DuplicateWebhookEvent(
        {"external_event_id": ["Event already received"]},
        external_event_id=command.external_event_id,
    )
    try:
        with unit_of_work() as session:
            if find_event(session, command.external_event_id) is not None:
                raise duplicate
            session.add(
                WebhookEvent(
                    id=new_id(),
                    external_event_id=command.external_event_id,
                    event_type=command.event_type,
                    payload=command.payload,
                    processed=False,
                    attempts=0,
                    created_at=utcnow(),
                )
            )
    except IntegrityError as exc:
        # A concurrent delivery of the same event won the insert
        raise duplicate from exc


def _apply(session, event, external_event_id: str) -> SettlementOutcome:
    if isinstance(event, PaymentIntentSucceeded):
        return settle_success(
            session,
            event.intent_id,
            amount_minor=event.data.object.amount,
            currency=event.data.object.currency,
            external_event_id=external_event_id,
        )
    if isinstance(event, PaymentIntentFailed):
        return settle_failure(session, event.intent_id, reason=event.reason, external_event_id=external_event_id)
    if isinstance(event, PaymentIntentCanceled):
        return settle_failure(
            session,
            event.intent_id,
            reason=event.reason,
            canceled=True,
            external_event_id=external_event_id,
        )
    if isinstance(event, PaymentIntentProcessing):
        return settle_processing(session, event.intent_id)
    raise TypeError(f"Unhandled event model {type(event).__name__}")


@retry_on_conflict
def _dispatch(external_event_id: str) -> WebhookAck:
    with unit_of_work() as session:
        webhook = find_event(session, external_event_id, for_update=True)
        if webhook is None:
            raise DomainError({"external_event_id": ["Webhook event not stored"]})
        if webhook.processed:
            return WebhookAck(external_event_id=external_event_id, duplicate=True, processed=True)

        try:
            event = parse_event(webhook.event_type, webhook.payload)
        except UnknownEventType:
            record_anomaly(
                session,
                AnomalyKind.UNKNOWN_EVENT_TYPE,
                details=f"Ignored event of type {webhook.event_type}",
                external_event_id=external_event_id,
            )
            webhook.mark_processed(note=f"Ignored: unhandled event type {webhook.event_type}")
            return WebhookAck(external_event_id=external_event_id, processed=True, note=webhook.error_message)

        outcome = _apply(session, event, external_event_id)
        webhook.mark_processed(note=None if outcome.applied else outcome.note)
        return WebhookAck(external_event_id=external_event_id, processed=True, note=outcome.note)


def _describe(exc: Exception) -> str:
    if isinstance(exc, DomainError):
        details = "; ".join(f"{field}: {', '.join(errors)}" for field, errors in exc.messages.items())
        return f"{exc.code}: {details}"
    return f"{type(exc).__name__}: {exc}"


def _record_failure(external_event_id: str, exc: Exception) -> None:
    error = _describe(exc)
    try:
        with unit_of_work() as session:
            webhook = find_event(session, external_event_id, for_update=True)
            if webhook is None or webhook.processed:
                return
            webhook.mark_failed(error)

            if isinstance(exc, (PaymentNotFound, PaymentMismatch)):
                if isinstance(exc, PaymentNotFound):
                    kind = AnomalyKind.UNMATCHED_INTENT
                else:
                    kind = AnomalyKind.AMOUNT_MISMATCH
                if has_anomaly(session, kind, external_event_id):
                    return
                record_anomaly(
                    session,
                    kind,
                    details=error,
                    external_event_id=external_event_id,
                    external_intent_id=exc.context.get("external_intent_id"),
                    order_id=exc.context.get("order_id"),
                )
    except (DomainError, SQLAlchemyError):
        logger.exception("Could not record webhook failure", external_event_id=external_event_id, error=error)


def _process(external_event_id: str) -> WebhookAck:
    try:
        return _dispatch(external_event_id)
    except (DomainError, SQLAlchemyError) as exc:
        logger.error(
            "Webhook dispatch failed",
            external_event_id=external_event_id,
            error=_describe(exc),
        )
        _record_failure(external_event_id, exc)
        return WebhookAck(external_event_id=external_event_id, processed=False, error=_describe(exc))


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def ingest_webhook(command: IngestWebhook) -> WebhookAck:
    try:
        _store(command)
    except DuplicateWebhookEvent:
        logger.info(
            "Duplicate webhook ignored",
            external_event_id=command.external_event_id,
            event_type=command.event_type,
        )
        return WebhookAck(external_event_id=command.external_event_id, duplicate=True)

    ack = _process(command.external_event_id)
    logger.info(
        "Webhook ingested",
        external_event_id=command.external_event_id,
        event_type=command.event_type,
        processed=ack.processed,
    )
    return ack


def reprocess_pending(limit: int = 100) -> ReprocessReport:
    """Retry every stored event that has not been processed yet."""
    with unit_of_work() as session:
        pending_ids = [event.external_event_id for event in unprocessed_events(session, limit)]

    processed = 0
    for external_event_id in pending_ids:
        if _process(external_event_id).processed:
            processed += 1

    report = ReprocessReport(attempted=len(pending_ids), processed=processed, failed=len(pending_ids) - processed)
    logger.info("Webhook reprocessing complete", **asdict(report))
    return report


def failed_webhooks(limit: int = 100) -> list[WebhookEvent]:
    """Stored events still waiting to be processed, oldest first."""
    with unit_of_work() as session:
        return unprocessed_events(session, limit)
