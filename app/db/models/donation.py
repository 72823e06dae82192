"""SQLAlchemy ORM model for donations table"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func

from app.db.base import Base


class Donation(Base):
    """
    SQLAlchemy ORM model for the donations table.
    One row per provider payment intent. The fee breakdown is frozen onto the
    row at checkout time and never recomputed.
    """
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("net_cents >= 0", name="ck_donations_net_non_negative"),
        CheckConstraint("net_cents = amount_cents - fee_cents", name="ck_donations_net_balance"),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed', 'refunded')",
            name="ck_donations_status",
        ),
    )

    id = Column(String(64), primary_key=True)

    campaign_id = Column(String(64), nullable=False, index=True)
    participant_id = Column(String(64), nullable=True, index=True)
    donor_id = Column(
        String(64),
        ForeignKey("donors.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Money, in currency minor units
    amount_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False)
    provider_fee_cents = Column(Integer, nullable=False)
    fee_cents = Column(Integer, nullable=False)
    net_cents = Column(Integer, nullable=False)

    stripe_payment_intent_id = Column(String(255), nullable=False, unique=True, index=True)
    checkout_idempotency_key = Column(String(255), nullable=True, unique=True)
    refund_idempotency_key = Column(String(255), nullable=True)

    # Using String instead of Enum so the check constraint is portable
    status = Column(String(16), default="pending", nullable=False, index=True)
    message = Column(String(500), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Donation(id={self.id}, intent={self.stripe_payment_intent_id}, status='{self.status}')>"
