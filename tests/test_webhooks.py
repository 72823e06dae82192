"""Webhook reconciliation tests: real signatures, SQLite ledger"""
import asyncio
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app.db.models.donation import Donation as DonationORM
from app.db.models.donor import Donor as DonorORM
from app.db.models.webhook_event import WebhookEvent as WebhookEventORM
from app.features.donations.domain import DonationCreate, DonationStatus
from app.features.donations.errors import InvalidSignature
from app.features.donations.fees import calculate_fees
from app.features.donations.repositories import DonationRepository, DonorRepository, WebhookEventRepository
from app.features.donations.webhook_service import DispatchResult, DonationWebhookService
from tests.helpers import event_body, intent_object, sign_payload


async def _pending_donation(session, intent_id: str, amount: int = 10000):
    donation = await DonationRepository(session).create(
        DonationCreate.from_fees(
            donation_id=str(uuid.uuid4()),
            campaign_id="camp_1",
            intent_id=intent_id,
            fees=calculate_fees(amount),
        )
    )
    await session.commit()
    return donation


async def _deliver(service: DonationWebhookService, body: bytes) -> DispatchResult:
    return await service.handle_webhook(body, sign_payload(body))


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestSucceededEvent:

    @pytest.mark.asyncio
    async def test_donor_upserted_and_donation_succeeds(self, db, stripe_gateway):
        await _pending_donation(db, "pi_e")
        service = DonationWebhookService(db, stripe_gateway)
        body = event_body(
            "payment_intent.succeeded",
            intent_object("pi_e", donor_email="a@b.com", donor_name="John Doe"),
            event_id="evt_e",
        )

        result = await _deliver(service, body)

        donation = await DonationRepository(db).find_by_intent_id("pi_e")
        donor = await DonorRepository(db).find_by_email("a@b.com")
        assert result == DispatchResult.APPLIED
        assert donation.status == DonationStatus.SUCCEEDED
        assert (donor.first_name, donor.last_name) == ("John", "Doe")
        assert donation.donor_id == donor.id
        event = await WebhookEventRepository(db).find_by_provider_event_id("evt_e")
        assert event.processed is True
        assert event.processed_at is not None

    @pytest.mark.asyncio
    async def test_redelivery_of_same_event_changes_nothing(self, db, stripe_gateway):
        await _pending_donation(db, "pi_e")
        service = DonationWebhookService(db, stripe_gateway)
        body = event_body(
            "payment_intent.succeeded",
            intent_object("pi_e", donor_email="a@b.com", donor_name="John Doe"),
            event_id="evt_e",
        )
        await _deliver(service, body)
        before = await DonationRepository(db).find_by_intent_id("pi_e")

        result = await _deliver(service, body)

        after = await DonationRepository(db).find_by_intent_id("pi_e")
        assert result == DispatchResult.DUPLICATE
        assert after == before
        assert await _count(db, DonorORM) == 1
        assert await _count(db, DonationORM) == 1

    @pytest.mark.asyncio
    async def test_receipt_email_is_used_when_metadata_has_none(self, db, stripe_gateway):
        await _pending_donation(db, "pi_r")
        service = DonationWebhookService(db, stripe_gateway)
        obj = intent_object("pi_r")
        obj["receipt_email"] = "receipt@example.com"

        await _deliver(service, event_body("payment_intent.succeeded", obj))

        donor = await DonorRepository(db).find_by_email("receipt@example.com")
        assert (donor.first_name, donor.last_name) == ("Anonymous", "Donor")

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_apply_once(self, session_factory, stripe_gateway):
        async with session_factory() as session:
            await _pending_donation(session, "pi_c")
        bodies = [
            event_body(
                "payment_intent.succeeded",
                intent_object("pi_c", donor_email="c@d.com", donor_name="Ada Lovelace"),
                event_id=f"evt_c_{i}",
            )
            for i in range(2)
        ]

        async def deliver(body):
            async with session_factory() as session:
                return await _deliver(DonationWebhookService(session, stripe_gateway), body)

        with patch.object(DonorRepository, "upsert_by_email", autospec=True, side_effect=DonorRepository.upsert_by_email) as upsert:
            results = await asyncio.gather(*[deliver(b) for b in bodies])

        assert sorted(r.value for r in results) == ["applied", "noop"]
        assert upsert.call_count == 1
        async with session_factory() as session:
            donation = await DonationRepository(session).find_by_intent_id("pi_c")
            assert donation.status == DonationStatus.SUCCEEDED
            assert await _count(session, DonorORM) == 1


class TestTransitions:

    @pytest.mark.asyncio
    async def test_payment_failed_does_not_regress_succeeded(self, db, stripe_gateway):
        await _pending_donation(db, "pi_m")
        service = DonationWebhookService(db, stripe_gateway)
        await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_m")))

        result = await _deliver(service, event_body("payment_intent.payment_failed", intent_object("pi_m", status="requires_payment_method")))

        donation = await DonationRepository(db).find_by_intent_id("pi_m")
        assert result == DispatchResult.NOOP
        assert donation.status == DonationStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_out_of_order_failure_then_success_keeps_failed(self, db, stripe_gateway):
        await _pending_donation(db, "pi_o")
        service = DonationWebhookService(db, stripe_gateway)

        await _deliver(service, event_body("payment_intent.canceled", intent_object("pi_o", status="canceled")))
        await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_o")))

        donation = await DonationRepository(db).find_by_intent_id("pi_o")
        assert donation.status == DonationStatus.FAILED

    @pytest.mark.asyncio
    async def test_charge_refunded_after_success(self, db, stripe_gateway):
        await _pending_donation(db, "pi_f")
        service = DonationWebhookService(db, stripe_gateway)
        await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_f")))

        charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_f", "amount_refunded": 10000}
        first = await _deliver(service, event_body("charge.refunded", charge))
        second = await _deliver(service, event_body("charge.refunded", charge))

        donation = await DonationRepository(db).find_by_intent_id("pi_f")
        assert (first, second) == (DispatchResult.APPLIED, DispatchResult.NOOP)
        assert donation.status == DonationStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_dispute_resolves_intent_through_charge(self, db, stripe_gateway):
        await _pending_donation(db, "pi_d")
        service = DonationWebhookService(db, stripe_gateway)
        await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_d")))
        dispute = {"id": "dp_1", "object": "dispute", "charge": "ch_9"}

        with patch.object(stripe_gateway, "get_charge_intent_id", return_value="pi_d") as lookup:
            result = await _deliver(service, event_body("charge.dispute.created", dispute))

        lookup.assert_called_once_with("ch_9")
        assert result == DispatchResult.APPLIED
        assert (await DonationRepository(db).find_by_intent_id("pi_d")).status == DonationStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_acknowledged(self, db, stripe_gateway):
        service = DonationWebhookService(db, stripe_gateway)

        result = await _deliver(service, event_body("customer.created", {"id": "cus_1"}, event_id="evt_u"))

        event = await WebhookEventRepository(db).find_by_provider_event_id("evt_u")
        assert result == DispatchResult.IGNORED
        assert event.processed is True

    @pytest.mark.asyncio
    async def test_event_without_donation_is_logged_not_fabricated(self, db, stripe_gateway):
        service = DonationWebhookService(db, stripe_gateway)

        result = await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_ghost"), event_id="evt_g"))

        event = await WebhookEventRepository(db).find_by_provider_event_id("evt_g")
        assert result == DispatchResult.ORPHANED
        assert event.processed is False
        assert event.error == "no matching donation"
        assert await _count(db, DonationORM) == 0


class TestRejectedDeliveries:

    @pytest.mark.asyncio
    async def test_invalid_signature_never_touches_the_ledger(self, db, stripe_gateway):
        await _pending_donation(db, "pi_x")
        service = DonationWebhookService(db, stripe_gateway)
        body = event_body("payment_intent.succeeded", intent_object("pi_x", donor_email="evil@example.com"))

        with pytest.raises(InvalidSignature):
            await service.handle_webhook(body, sign_payload(body, secret="whsec_attacker"))

        donation = await DonationRepository(db).find_by_intent_id("pi_x")
        assert donation.status == DonationStatus.PENDING
        assert await _count(db, DonorORM) == 0
        assert await WebhookEventRepository(db).list_unprocessed() == []

    @pytest.mark.asyncio
    async def test_rejected_delivery_is_logged_as_webhook_error(self, db, stripe_gateway):
        service = DonationWebhookService(db, stripe_gateway)
        body = event_body("payment_intent.succeeded", intent_object("pi_x"))

        with pytest.raises(InvalidSignature):
            await service.handle_webhook(body, None)

        rows = (await db.execute(select(WebhookEventORM))).scalars().all()
        assert len(rows) == 1
        assert rows[0].event_type == "webhook.error"
        assert rows[0].processed is False
        assert rows[0].provider_event_id is None

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_recorded_and_raised(self, db, stripe_gateway):
        await _pending_donation(db, "pi_boom")
        service = DonationWebhookService(db, stripe_gateway)

        with patch.object(service.ledger, "apply_transition", side_effect=RuntimeError("db went away")):
            with pytest.raises(RuntimeError):
                await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_boom"), event_id="evt_b"))

        event = await WebhookEventRepository(db).find_by_provider_event_id("evt_b")
        assert event.processed is False
        assert "db went away" in event.error

        # Stripe redelivers; this time it applies
        result = await _deliver(service, event_body("payment_intent.succeeded", intent_object("pi_boom"), event_id="evt_b"))
        assert result == DispatchResult.APPLIED
