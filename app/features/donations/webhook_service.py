"""Webhook service for reconciling donations with Stripe events

This service is the **only writer** of donation status driven by Stripe
notifications. Every delivery is recorded in the webhook event log before it
is acted on, and an event id is processed at most once.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.donations.domain import DonationStatus, TransitionOutcome, WebhookEvent, WebhookEventCreate
from app.features.donations.errors import InvalidSignature
from app.features.donations.gateway import ProviderEvent, StripePaymentGateway, call_provider, intent_from_stripe
from app.features.donations.ledger import DonationLedger, donor_from_intent
from app.features.donations.repositories.webhook_events import REJECTED_EVENT_TYPE, WebhookEventRepository

logger = logging.getLogger(__name__)

EVENT_TARGETS: Dict[str, DonationStatus] = {
    "payment_intent.succeeded": DonationStatus.SUCCEEDED,
    "payment_intent.payment_failed": DonationStatus.FAILED,
    "payment_intent.canceled": DonationStatus.FAILED,
    "charge.refunded": DonationStatus.REFUNDED,
    "charge.dispute.created": DonationStatus.REFUNDED,
}

ORPHANED_ERROR = "no matching donation"

# Rejected bodies are kept for audit only, bounded
_REJECTED_BODY_LIMIT = 10_000


class DispatchResult(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    IGNORED = "ignored"
    ORPHANED = "orphaned"
    DUPLICATE = "duplicate"


class DonationWebhookService:
    """Service for handling Stripe payment webhooks"""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway):
        self.db = db
        self.gateway = gateway
        self.events = WebhookEventRepository(db)
        self.ledger = DonationLedger(db)

    async def handle_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> DispatchResult:
        """
        Verify, record and dispatch one delivery.

        Raises:
            InvalidSignature: the delivery is logged as webhook.error and nothing else is touched
            ProviderNotConfigured: no webhook secret
            Exception: dispatch failed; the event stays unprocessed with the error recorded
        """
        try:
            event = self.gateway.verify_signature(raw_body, signature_header)
        except InvalidSignature as e:
            logger.warning(f"DonationWebhookService: Rejected webhook delivery: {e.message}")
            await self._record_rejected(raw_body, e.message)
            raise

        stored, created = await self.events.append(
            WebhookEventCreate(
                provider_event_id=event.id,
                source="stripe",
                event_type=event.type,
                payload=event.payload,
            )
        )
        # Receipt is durable before any ledger mutation
        await self.db.commit()

        if stored.processed:
            logger.info(f"DonationWebhookService: Event {event.id} already processed at {stored.processed_at}, skipping")
            return DispatchResult.DUPLICATE
        if not created:
            logger.info(f"DonationWebhookService: Event {event.id} redelivered before processing completed, retrying")

        return await self.process(stored.id, event)

    async def process(self, event_row_id: str, event: ProviderEvent) -> DispatchResult:
        """Dispatch a logged event; failures are recorded on its log row and re-raised"""
        try:
            return await self.dispatch(event_row_id, event)
        except Exception as e:
            await self.db.rollback()
            logger.error(f"DonationWebhookService: Failed to process event {event.id} ({event.type})", exc_info=True)
            await self.events.record_failure(event_row_id, f"{type(e).__name__}: {e}")
            await self.db.commit()
            raise

    async def dispatch(self, event_row_id: str, event: ProviderEvent) -> DispatchResult:
        """
        Apply an event through the transition table and close its log row in
        the same commit as the ledger change.
        """
        target = EVENT_TARGETS.get(event.type)
        if target is None:
            logger.info(f"DonationWebhookService: Ignoring unhandled event type {event.type} ({event.id})")
            await self.events.mark_processed(event_row_id)
            await self.db.commit()
            return DispatchResult.IGNORED

        intent_id = await self.resolve_intent_id(event)
        if not intent_id:
            logger.warning(f"DonationWebhookService: Event {event.id} ({event.type}) names no payment intent")
            await self.events.mark_processed(event_row_id, error="event carries no payment intent")
            await self.db.commit()
            return DispatchResult.IGNORED

        donor = None
        if target is DonationStatus.SUCCEEDED:
            donor = donor_from_intent(intent_from_stripe(event.data_object))

        outcome = await self.ledger.apply_transition(intent_id, target, donor=donor)

        if outcome is TransitionOutcome.NOT_FOUND:
            logger.error(
                f"DonationWebhookService: ALERT no donation for intent {intent_id} "
                f"(event {event.id}, {event.type}); left for reconciliation"
            )
            await self.events.record_failure(event_row_id, ORPHANED_ERROR)
            await self.db.commit()
            return DispatchResult.ORPHANED

        await self.events.mark_processed(event_row_id)
        await self.db.commit()

        if outcome is TransitionOutcome.NOOP:
            logger.info(f"DonationWebhookService: Event {event.id} is a no-op for intent {intent_id}")
            return DispatchResult.NOOP
        return DispatchResult.APPLIED

    async def resolve_intent_id(self, event: ProviderEvent) -> Optional[str]:
        """PaymentIntent id an event refers to; disputes may only name the charge"""
        obj = event.data_object
        if event.type.startswith("payment_intent."):
            return obj.get("id")

        intent = obj.get("payment_intent")
        if isinstance(intent, dict):
            intent = intent.get("id")
        if intent:
            return intent

        if event.type == "charge.dispute.created" and obj.get("charge"):
            return await call_provider(self.gateway.get_charge_intent_id, obj["charge"])
        return None

    async def list_unprocessed(self, source: Optional[str] = None, limit: int = 100) -> List[WebhookEvent]:
        return await self.events.list_unprocessed(source=source, limit=limit)

    async def prune_processed(self, days: int = 30) -> int:
        """Delete processed events older than `days`"""
        deleted = await self.events.delete_processed_older_than(days)
        await self.db.commit()
        logger.info(f"DonationWebhookService: Pruned {deleted} processed events older than {days} days")
        return deleted

    async def _record_rejected(self, raw_body: bytes, reason: str) -> None:
        body = raw_body.decode("utf-8", errors="replace")[:_REJECTED_BODY_LIMIT]
        await self.events.append(
            WebhookEventCreate(
                provider_event_id=None,
                source="stripe",
                event_type=REJECTED_EVENT_TYPE,
                payload={"reason": reason, "body": body},
                processed=False,
                error=reason,
            )
        )
        await self.db.commit()
