"""Request/response schemas for Donations API"""
import re
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from app.features.donations.domain import (
    CamelModel,
    DonationStatus,
    FeeBreakdown,
)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class StrictRequest(CamelModel):
    """Request body: camelCase on the wire, unknown fields rejected"""
    model_config = ConfigDict(extra="forbid")


class CheckoutRequest(StrictRequest):
    """Request to start a donation checkout.

    The 50 cent floor is enforced by the service so it reports BelowMinimum.
    """
    amount_cents: int = Field(..., strict=True)
    campaign_id: str = Field(..., min_length=1, max_length=64)
    participant_id: Optional[str] = Field(None, min_length=1, max_length=64)
    donor_email: Optional[str] = Field(None, max_length=320)
    donor_name: Optional[str] = Field(None, max_length=200)
    message: Optional[str] = Field(None, max_length=500)

    @field_validator("donor_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        if not _EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v


class ConfirmRequest(StrictRequest):
    payment_intent_id: str = Field(..., min_length=1)


class RefundRequest(StrictRequest):
    amount_cents: Optional[int] = Field(None, strict=True, gt=0)
    reason: Optional[str] = None


class PaymentIntentResponse(CamelModel):
    id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str
    status: str


class DonationResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: str
    participant_id: Optional[str] = None
    donor_id: Optional[str] = None
    amount_cents: int
    platform_fee_cents: int
    provider_fee_cents: int
    fee_cents: int
    net_cents: int
    stripe_payment_intent_id: str
    status: DonationStatus
    message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DonationDetailResponse(DonationResponse):
    donor_email: Optional[str] = None
    donor_first_name: Optional[str] = None
    donor_last_name: Optional[str] = None


class CheckoutResponse(CamelModel):
    payment_intent: PaymentIntentResponse
    donation: DonationResponse
    fee_breakdown: FeeBreakdown


class ConfirmResponse(CamelModel):
    donation: DonationResponse
    provider_status: str


class RefundResponse(CamelModel):
    refund_id: str
    amount_cents: int
    status: Optional[str] = None
    donation: DonationResponse


class DonationListResponse(CamelModel):
    donations: List[DonationDetailResponse]
    limit: int
    offset: int


class DonationStatsResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    total_donations: int
    unique_donors: int
    total_raised_cents: int
    total_net_cents: int
    total_fee_cents: int
    avg_donation_cents: int


class ClientConfigResponse(CamelModel):
    """What the browser needs to mount the payment form"""
    publishable_key: Optional[str] = None
    currency: str
    platform_fee_percentage: Decimal
    minimum_amount_cents: int


class WebhookAck(CamelModel):
    received: bool = True
    outcome: str


class WebhookEventResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_event_id: Optional[str] = None
    source: str
    event_type: str
    processed: bool
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int
    received_at: datetime


class PruneResponse(CamelModel):
    deleted: int


class SweepResponse(CamelModel):
    examined: int = 0
    applied: int = 0
    noop: int = 0
    ignored: int = 0
    recreated: int = 0
    alerts: int = 0
    failed: int = 0
