"""Reconciliation sweep over the webhook event log

Re-dispatches verified events that never finished processing. When an event
points at an intent with no local donation (the checkout died between the
Stripe call and the ledger insert), the donation is rebuilt from the intent as
Stripe reports it, provided the intent carries our campaign metadata. Intents
without it cannot be attributed and are raised as alerts.

Every write goes through the same conditional transitions as live webhooks,
so the sweep may run while deliveries are arriving.
"""
import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.donations.domain import DonationCreate, FeeBreakdown, WebhookEvent
from app.features.donations.fees import calculate_fees
from app.features.donations.gateway import ProviderEvent, ProviderIntent, StripePaymentGateway, call_provider
from app.features.donations.ledger import INTENT_STATUS_TARGETS, donor_from_intent
from app.features.donations.schemas import SweepResponse
from app.features.donations.webhook_service import DispatchResult, DonationWebhookService

logger = logging.getLogger(__name__)

UNATTRIBUTABLE_ERROR = "orphaned intent without campaign metadata"


def fees_from_metadata(intent: ProviderIntent) -> FeeBreakdown:
    """Fee breakdown frozen into the intent metadata at checkout, recomputed if absent"""
    metadata = intent.metadata
    try:
        return FeeBreakdown(
            amount_cents=int(metadata["amount_cents"]),
            platform_fee_cents=int(metadata["platform_fee_cents"]),
            provider_fee_cents=int(metadata["stripe_fee_cents"]),
            total_fee_cents=int(metadata["total_fee_cents"]),
            net_cents=int(metadata["net_cents"]),
        )
    except (KeyError, ValueError):
        logger.warning(f"ReconciliationSweep: Intent {intent.id} has no usable fee metadata, recomputing")
        return calculate_fees(intent.amount)


class ReconciliationSweep:
    """Brings the ledger in line with events that were logged but not processed"""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway):
        self.db = db
        self.gateway = gateway
        self.webhooks = DonationWebhookService(db, gateway)

    async def run(self, limit: int = 100) -> SweepResponse:
        """Reconcile up to `limit` unprocessed events, oldest first"""
        report = SweepResponse()
        pending = await self.webhooks.events.list_unprocessed(source="stripe", limit=limit)
        logger.info(f"ReconciliationSweep: {len(pending)} unprocessed events")

        for row in pending:
            report.examined += 1
            try:
                await self._reconcile(row, report)
            except Exception as e:
                await self.db.rollback()
                logger.error(f"ReconciliationSweep: Event {row.provider_event_id} failed", exc_info=True)
                await self.webhooks.events.record_failure(row.id, f"{type(e).__name__}: {e}")
                await self.db.commit()
                report.failed += 1

        logger.info(f"ReconciliationSweep: Finished {report.model_dump()}")
        return report

    async def _reconcile(self, row: WebhookEvent, report: SweepResponse) -> None:
        try:
            event = ProviderEvent.from_payload(row.payload)
        except ValueError as e:
            await self.webhooks.events.mark_processed(row.id, error=f"unreadable stored payload: {e}")
            await self.db.commit()
            report.ignored += 1
            return

        result = await self.webhooks.dispatch(row.id, event)

        if result is DispatchResult.ORPHANED:
            intent_id = await self.webhooks.resolve_intent_id(event)
            intent = await call_provider(self.gateway.get_intent, intent_id)
            if not intent.metadata.get("campaign_id"):
                logger.error(
                    f"ReconciliationSweep: ALERT intent {intent.id} has no local donation and no campaign "
                    f"metadata (event {event.id}); manual review required"
                )
                await self.webhooks.events.mark_processed(row.id, error=UNATTRIBUTABLE_ERROR)
                await self.db.commit()
                report.alerts += 1
                return

            await self.recreate_donation(intent)
            report.recreated += 1
            result = await self.webhooks.dispatch(row.id, event)

        if result is DispatchResult.APPLIED:
            report.applied += 1
        elif result is DispatchResult.NOOP:
            report.noop += 1
        elif result is DispatchResult.IGNORED:
            report.ignored += 1

    async def recreate_donation(self, intent: ProviderIntent) -> None:
        """
        Insert the missing donation as pending, then walk it to the intent's
        current status so the triggering event applies on top of it.
        """
        ledger = self.webhooks.ledger
        metadata = intent.metadata
        donor = donor_from_intent(intent)

        try:
            donor_id = await ledger.upsert_donor(donor) if donor else None
            await ledger.donations.create(
                DonationCreate.from_fees(
                    donation_id=str(uuid.uuid4()),
                    campaign_id=metadata["campaign_id"],
                    intent_id=intent.id,
                    fees=fees_from_metadata(intent),
                    participant_id=metadata.get("participant_id"),
                    donor_id=donor_id,
                    message=metadata.get("message"),
                )
            )
            await self.db.commit()
            logger.warning(f"ReconciliationSweep: Recreated donation for orphaned intent {intent.id}")
        except IntegrityError:
            # Created concurrently by a retried checkout
            await self.db.rollback()
            logger.info(f"ReconciliationSweep: Donation for {intent.id} appeared concurrently")

        target = INTENT_STATUS_TARGETS.get(intent.status)
        if target is not None:
            await ledger.apply_transition(intent.id, target, donor=donor)
            await self.db.commit()
