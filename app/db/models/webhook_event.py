"""SQLAlchemy ORM model for webhook_events table"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON
from sqlalchemy.sql import func

from app.db.base import Base


class WebhookEvent(Base):
    """
    Append-only log of inbound provider notifications.

    provider_event_id is the provider-assigned id and the idempotency key for
    processing. Rejected deliveries (bad signature) have no provider id and are
    logged with event_type='webhook.error'.
    """
    __tablename__ = "webhook_events"

    id = Column(String(64), primary_key=True)
    provider_event_id = Column(String(255), nullable=True, unique=True, index=True)

    source = Column(String(32), nullable=False, default="stripe")
    event_type = Column(String(128), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    processed = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    received_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(id={self.id}, type='{self.event_type}', processed={self.processed})>"
