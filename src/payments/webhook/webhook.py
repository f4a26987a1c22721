"""Persisted gateway webhook events.

Each delivery is stored before anything is done with it. The unique
``external_event_id`` is the deduplication key; ``processed`` flips to true
in the same transaction that applies the event's side effects.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from shared.database import Base, UTCDateTime, new_id, utcnow


class WebhookEvent(Base):
    __tablename__ = "payment_webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    error_message: Mapped[str | None] = mapped_column(Text)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    def mark_processed(self, note: str | None = None) -> None:
        self.processed = True
        self.processed_at = utcnow()
        self.error_message = note
        self.attempts += 1

    def mark_failed(self, error: str) -> None:
        self.processed = False
        self.error_message = error
        self.attempts += 1


def find_event(session: Session, external_event_id: str, for_update: bool = False) -> WebhookEvent | None:
    query = (
        select(WebhookEvent)
        .where(WebhookEvent.external_event_id == external_event_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    return session.execute(query).scalar_one_or_none()


def unprocessed_events(session: Session, limit: int = 100) -> list[WebhookEvent]:
    query = (
        select(WebhookEvent)
        .where(WebhookEvent.processed.is_(False))
        .order_by(WebhookEvent.created_at)
        .limit(limit)
    )
    return list(session.scalars(query))
