"""Donation services: checkout, confirmation, refunds and ledger queries

Services own the transaction: repositories flush, services commit.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import PLATFORM_FEE_PERCENTAGE, STRIPE_PUBLISHABLE_KEY
from app.features.donations.domain import (
    Donation,
    DonationCreate,
    DonationStats,
    DonationStatus,
    DonationUpdate,
    DonationWithDonor,
    DonorUpsert,
    FeeBreakdown,
)
from app.features.donations.errors import (
    BelowMinimum,
    CampaignNotActive,
    CampaignNotFound,
    ConflictError,
    DonationNotFound,
    NotRefundable,
    ParticipantMismatch,
    ValidationError,
)
from app.features.donations.fees import calculate_fees
from app.features.donations.gateway import (
    MINIMUM_AMOUNT_CENTS,
    ProviderIntent,
    ProviderRefund,
    StripePaymentGateway,
    call_provider,
)
from app.features.donations.ledger import INTENT_STATUS_TARGETS, DonationLedger, donor_from_intent
from app.features.donations.repositories.catalog import CampaignCatalog
from app.features.donations.schemas import CheckoutRequest, ClientConfigResponse

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    intent: ProviderIntent
    donation: Donation
    fees: FeeBreakdown


class CheckoutOrchestrator:
    """
    Starts a donation: validates it against the campaign catalog, creates the
    provider intent and records the pending donation.

    The checkout idempotency key is generated here when the client sends none,
    forwarded to Stripe and stored on the donation, so a retried request finds
    the donation it already created instead of charging twice.
    """

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway, catalog: CampaignCatalog):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog
        self.ledger = DonationLedger(db)

    async def validate(self, req: CheckoutRequest) -> None:
        """Preconditions in order; the first one that fails is raised"""
        if req.amount_cents < MINIMUM_AMOUNT_CENTS:
            raise BelowMinimum(MINIMUM_AMOUNT_CENTS)

        campaign = await self.catalog.get_campaign(req.campaign_id)
        if campaign is None:
            raise CampaignNotFound(req.campaign_id)
        if not campaign.is_active:
            raise CampaignNotActive(req.campaign_id, campaign.status)

        if req.participant_id:
            participant = await self.catalog.get_participant(req.participant_id, req.campaign_id)
            if participant is None:
                raise ParticipantMismatch(req.participant_id, req.campaign_id)

    async def create_checkout(self, req: CheckoutRequest, idempotency_key: Optional[str] = None) -> CheckoutResult:
        """
        Raises:
            BelowMinimum, CampaignNotFound, CampaignNotActive, ParticipantMismatch
            ProviderNotConfigured: no Stripe secret key
            GatewayError: intent creation failed; nothing is written locally
        """
        await self.validate(req)

        key = idempotency_key or str(uuid.uuid4())
        existing = await self.ledger.donations.find_by_idempotency_key(key)
        if existing is not None:
            logger.info(f"CheckoutOrchestrator: Replaying checkout {key} for donation {existing.id}")
            return await self._replay(existing)

        fees = calculate_fees(req.amount_cents)
        intent = await call_provider(
            self.gateway.create_intent,
            amount_cents=req.amount_cents,
            campaign_id=req.campaign_id,
            participant_id=req.participant_id,
            donor_email=req.donor_email,
            donor_name=req.donor_name,
            message=req.message,
            idempotency_key=key,
            fees=fees,
        )

        try:
            donor_id = None
            if req.donor_email:
                donor_id = await self.ledger.upsert_donor(DonorUpsert.from_full_name(req.donor_email, req.donor_name))

            donation = await self.ledger.donations.create(
                DonationCreate.from_fees(
                    donation_id=str(uuid.uuid4()),
                    campaign_id=req.campaign_id,
                    intent_id=intent.id,
                    fees=fees,
                    participant_id=req.participant_id,
                    donor_id=donor_id,
                    message=req.message,
                    idempotency_key=key,
                )
            )
            await self.db.commit()
        except IntegrityError:
            # A concurrent retry with the same key got there first
            await self.db.rollback()
            donation = await self.ledger.donations.find_by_intent_id(intent.id)
            if donation is None:
                donation = await self.ledger.donations.find_by_idempotency_key(key)
            if donation is None:
                logger.error(f"CheckoutOrchestrator: ALERT orphaned intent {intent.id}, donation insert conflicted")
                raise ConflictError("Donation could not be recorded")
            return CheckoutResult(intent=intent, donation=donation, fees=donation.fee_breakdown)

        logger.info(
            f"CheckoutOrchestrator: Donation {donation.id} pending on {intent.id} "
            f"({fees.amount_cents} cents, campaign {req.campaign_id})"
        )
        return CheckoutResult(intent=intent, donation=donation, fees=fees)

    async def _replay(self, donation: Donation) -> CheckoutResult:
        intent = await call_provider(self.gateway.get_intent, donation.stripe_payment_intent_id)
        return CheckoutResult(intent=intent, donation=donation, fees=donation.fee_breakdown)


class DonationService:
    """Confirmation, refunds and read access to the donation ledger"""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = DonationLedger(db)

    async def confirm(self, intent_id: str) -> Tuple[Donation, ProviderIntent]:
        """
        Reconcile a donation with Stripe's view of its intent.

        Whatever the client believes happened, only the status fetched from
        Stripe moves the donation.
        """
        donation = await self.ledger.donations.find_by_intent_id(intent_id)
        if donation is None:
            raise DonationNotFound(intent_id)

        intent = await call_provider(self.gateway.get_intent, intent_id)
        target = INTENT_STATUS_TARGETS.get(intent.status)
        if target is not None:
            outcome = await self.ledger.apply_transition(intent_id, target, donor=donor_from_intent(intent))
            await self.db.commit()
            logger.info(f"DonationService: Confirm {intent_id} -> {target.value} ({outcome.value})")
            donation = await self.ledger.donations.find_by_intent_id(intent_id)

        return donation, intent

    async def refund(
        self,
        donation_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[Donation, ProviderRefund]:
        """
        Refund a succeeded donation.

        The idempotency key is stored with the refund. Retrying with that key
        after the donation is refunded replays the same Stripe refund instead
        of failing with NotRefundable.
        """
        donation = await self.ledger.donations.find_by_id(donation_id)
        if donation is None:
            raise DonationNotFound(donation_id)

        replay = (
            donation.status == DonationStatus.REFUNDED
            and idempotency_key is not None
            and idempotency_key == donation.refund_idempotency_key
        )
        if not replay and donation.status != DonationStatus.SUCCEEDED:
            raise NotRefundable(f"Only succeeded donations can be refunded (status: {donation.status.value})")
        if amount_cents is not None and amount_cents > donation.amount_cents:
            raise ValidationError("Refund amount exceeds the donation amount", field="amountCents")

        key = idempotency_key or str(uuid.uuid4())
        refund = await call_provider(
            self.gateway.create_refund,
            donation.stripe_payment_intent_id,
            amount_cents=amount_cents,
            reason=reason,
            idempotency_key=key,
        )
        if replay:
            logger.info(f"DonationService: Replayed refund {refund.id} for donation {donation_id} (key {key})")
            return donation, refund

        await self.ledger.apply_transition(donation.stripe_payment_intent_id, DonationStatus.REFUNDED)
        await self.ledger.donations.update(donation_id, DonationUpdate(refund_idempotency_key=key))
        await self.db.commit()
        logger.info(f"DonationService: Refunded donation {donation_id} ({refund.amount} cents, {refund.id})")

        return await self.ledger.donations.find_by_id(donation_id), refund

    async def get_donation(self, donation_id: str) -> DonationWithDonor:
        donation = await self.ledger.donations.find_with_donor(donation_id)
        if donation is None:
            raise DonationNotFound(donation_id)
        return donation

    async def list_for_campaign(self, campaign_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self.ledger.donations.list_by_campaign(campaign_id, limit, offset)

    async def list_for_participant(self, participant_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self.ledger.donations.list_by_participant(participant_id, limit, offset)

    async def list_for_donor(self, donor_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self.ledger.donations.list_succeeded_by_donor(donor_id, limit, offset)

    async def campaign_stats(self, campaign_id: str) -> DonationStats:
        return await self.ledger.donations.campaign_stats(campaign_id)

    def client_config(self) -> ClientConfigResponse:
        return ClientConfigResponse(
            publishable_key=STRIPE_PUBLISHABLE_KEY or None,
            currency=self.gateway.currency,
            platform_fee_percentage=PLATFORM_FEE_PERCENTAGE,
            minimum_amount_cents=MINIMUM_AMOUNT_CENTS,
        )
