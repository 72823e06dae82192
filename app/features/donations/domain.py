"""Domain models for Donations feature"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DonationStatus(str, Enum):
    """Donation status enum"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: Dict[DonationStatus, frozenset] = {
    DonationStatus.SUCCEEDED: frozenset({DonationStatus.PENDING}),
    DonationStatus.FAILED: frozenset({DonationStatus.PENDING}),
    DonationStatus.REFUNDED: frozenset({DonationStatus.SUCCEEDED}),
}


class TransitionOutcome(str, Enum):
    """Result of applying a provider event to the ledger"""
    APPLIED = "applied"
    NOOP = "noop"
    NOT_FOUND = "not_found"


class CamelModel(BaseModel):
    """Base for models that cross the HTTP boundary with camelCase names"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FeeBreakdown(CamelModel):
    """Fee split for one gross amount. Never persisted on its own."""
    amount_cents: int
    platform_fee_cents: int
    provider_fee_cents: int
    total_fee_cents: int
    net_cents: int


class DonationBase(BaseModel):
    """Base donation fields"""
    campaign_id: str
    participant_id: Optional[str] = None
    donor_id: Optional[str] = None
    amount_cents: int
    platform_fee_cents: int
    provider_fee_cents: int
    fee_cents: int
    net_cents: int = Field(..., ge=0)
    stripe_payment_intent_id: str
    status: DonationStatus = DonationStatus.PENDING
    message: Optional[str] = Field(None, max_length=500)


class DonationCreate(DonationBase):
    """Donation creation model"""
    id: str
    checkout_idempotency_key: Optional[str] = None

    @classmethod
    def from_fees(
        cls,
        donation_id: str,
        campaign_id: str,
        intent_id: str,
        fees: FeeBreakdown,
        participant_id: Optional[str] = None,
        donor_id: Optional[str] = None,
        message: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> "DonationCreate":
        """Freeze a fee breakdown onto a new pending donation"""
        return cls(
            id=donation_id,
            campaign_id=campaign_id,
            participant_id=participant_id,
            donor_id=donor_id,
            amount_cents=fees.amount_cents,
            platform_fee_cents=fees.platform_fee_cents,
            provider_fee_cents=fees.provider_fee_cents,
            fee_cents=fees.total_fee_cents,
            net_cents=fees.net_cents,
            stripe_payment_intent_id=intent_id,
            status=DonationStatus.PENDING,
            message=message,
            checkout_idempotency_key=idempotency_key,
        )


class DonationUpdate(BaseModel):
    """Explicit update patch for a donation - unknown fields are rejected"""
    model_config = ConfigDict(extra="forbid")

    status: Optional[DonationStatus] = None
    donor_id: Optional[str] = None
    refund_idempotency_key: Optional[str] = None


class Donation(DonationBase):
    """Complete donation domain model"""
    id: str
    checkout_idempotency_key: Optional[str] = None
    refund_idempotency_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def fee_breakdown(self) -> FeeBreakdown:
        return FeeBreakdown(
            amount_cents=self.amount_cents,
            platform_fee_cents=self.platform_fee_cents,
            provider_fee_cents=self.provider_fee_cents,
            total_fee_cents=self.fee_cents,
            net_cents=self.net_cents,
        )


class DonationWithDonor(Donation):
    """Donation joined with its donor identity"""
    donor_email: Optional[str] = None
    donor_first_name: Optional[str] = None
    donor_last_name: Optional[str] = None


class DonationStats(BaseModel):
    """Aggregates over a campaign's donations (money sums count succeeded only)"""
    total_donations: int
    unique_donors: int
    total_raised_cents: int
    total_net_cents: int
    total_fee_cents: int
    avg_donation_cents: int


class DonorUpsert(BaseModel):
    """
    Donor identity to merge by email.

    None means "unknown": on merge it never overwrites a stored value. The
    Anonymous/Donor placeholders are only used when a row is first created.
    """
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_full_name(cls, email: str, full_name: Optional[str], phone: Optional[str] = None) -> "DonorUpsert":
        """Best-effort split of a free-text name into first/last"""
        parts = (full_name or "").split()
        first_name = parts[0] if parts else None
        last_name = " ".join(parts[1:]) if len(parts) > 1 else None
        return cls(
            email=email.strip().lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone or None,
        )


class Donor(BaseModel):
    """Complete donor domain model"""
    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookEventCreate(BaseModel):
    """Webhook event log entry to append"""
    provider_event_id: Optional[str] = None
    source: str = "stripe"
    event_type: str
    payload: Dict[str, Any]
    processed: bool = False
    error: Optional[str] = None


class WebhookEvent(BaseModel):
    """Complete webhook event model from database"""
    id: str
    provider_event_id: Optional[str] = None
    source: str
    event_type: str
    payload: Dict[str, Any]
    processed: bool
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int = 0
    received_at: datetime

    model_config = ConfigDict(from_attributes=True)
