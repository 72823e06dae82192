"""DonationService tests: confirmation against Stripe, refunds, ledger reads"""
import threading
import uuid

import pytest

from app.features.donations.domain import DonationCreate, DonationStatus, DonationUpdate, DonorUpsert
from app.features.donations.errors import DonationNotFound, NotRefundable, ValidationError
from app.features.donations.fees import calculate_fees
from app.features.donations.gateway import ProviderIntent, ProviderRefund
from app.features.donations.repositories import DonationRepository, DonorRepository
from app.features.donations.service import DonationService


async def _donation(session, intent_id: str, status: DonationStatus = DonationStatus.PENDING):
    repo = DonationRepository(session)
    donation = await repo.create(
        DonationCreate.from_fees(str(uuid.uuid4()), "camp_1", intent_id, calculate_fees(10000))
    )
    if status is not DonationStatus.PENDING:
        await repo.transition(intent_id, status)
    await session.commit()
    return await repo.find_by_id(donation.id)


def _intent(intent_id: str, status: str, **metadata) -> ProviderIntent:
    return ProviderIntent(id=intent_id, amount=10000, currency="usd", status=status, metadata=metadata)


class TestConfirm:

    @pytest.mark.asyncio
    async def test_succeeded_intent_marks_donation_succeeded(self, db, mock_gateway):
        await _donation(db, "pi_1")
        mock_gateway.get_intent.return_value = _intent("pi_1", "succeeded", donor_email="a@b.com", donor_name="Jane Roe")

        donation, intent = await DonationService(db, mock_gateway).confirm("pi_1")

        donor = await DonorRepository(db).find_by_email("a@b.com")
        assert donation.status == DonationStatus.SUCCEEDED
        assert donation.donor_id == donor.id
        assert intent.status == "succeeded"

    @pytest.mark.asyncio
    async def test_provider_call_runs_off_the_event_loop_thread(self, db, mock_gateway):
        await _donation(db, "pi_t")
        threads = []

        def get_intent(intent_id):
            threads.append(threading.get_ident())
            return _intent(intent_id, "processing")

        mock_gateway.get_intent.side_effect = get_intent

        await DonationService(db, mock_gateway).confirm("pi_t")

        assert threads and threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_processing_intent_leaves_donation_pending(self, db, mock_gateway):
        await _donation(db, "pi_2")
        mock_gateway.get_intent.return_value = _intent("pi_2", "processing")

        donation, _ = await DonationService(db, mock_gateway).confirm("pi_2")

        assert donation.status == DonationStatus.PENDING

    @pytest.mark.asyncio
    async def test_canceled_intent_marks_donation_failed(self, db, mock_gateway):
        await _donation(db, "pi_3")
        mock_gateway.get_intent.return_value = _intent("pi_3", "canceled")

        donation, _ = await DonationService(db, mock_gateway).confirm("pi_3")

        assert donation.status == DonationStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_intent_is_not_found_without_provider_call(self, db, mock_gateway):
        with pytest.raises(DonationNotFound):
            await DonationService(db, mock_gateway).confirm("pi_missing")

        mock_gateway.get_intent.assert_not_called()


class TestRefund:

    @pytest.mark.asyncio
    async def test_refund_of_succeeded_donation(self, db, mock_gateway):
        donation = await _donation(db, "pi_r", DonationStatus.SUCCEEDED)
        mock_gateway.create_refund.return_value = ProviderRefund(
            id="re_1", amount=10000, status="succeeded", payment_intent="pi_r"
        )

        refunded, refund = await DonationService(db, mock_gateway).refund(donation.id, idempotency_key="rk_1")

        mock_gateway.create_refund.assert_called_once_with("pi_r", amount_cents=None, reason=None, idempotency_key="rk_1")
        assert refund.id == "re_1"
        assert refunded.status == DonationStatus.REFUNDED
        assert refunded.refund_idempotency_key == "rk_1"

    @pytest.mark.asyncio
    async def test_retry_with_same_key_replays_the_refund(self, db, mock_gateway):
        donation = await _donation(db, "pi_rr", DonationStatus.SUCCEEDED)
        mock_gateway.create_refund.return_value = ProviderRefund(id="re_9", amount=10000, status="succeeded")
        service = DonationService(db, mock_gateway)
        await service.refund(donation.id, idempotency_key="rk_9")

        replayed, refund = await service.refund(donation.id, idempotency_key="rk_9")

        assert refund.id == "re_9"
        assert replayed.status == DonationStatus.REFUNDED
        keys = {c.kwargs["idempotency_key"] for c in mock_gateway.create_refund.call_args_list}
        assert keys == {"rk_9"}

    @pytest.mark.asyncio
    async def test_new_key_on_refunded_donation_is_rejected(self, db, mock_gateway):
        donation = await _donation(db, "pi_rk", DonationStatus.SUCCEEDED)
        mock_gateway.create_refund.return_value = ProviderRefund(id="re_8", amount=10000, status="succeeded")
        service = DonationService(db, mock_gateway)
        await service.refund(donation.id, idempotency_key="rk_first")

        with pytest.raises(NotRefundable):
            await service.refund(donation.id, idempotency_key="rk_other")

        assert mock_gateway.create_refund.call_count == 1

    @pytest.mark.asyncio
    async def test_partial_refund_still_marks_refunded(self, db, mock_gateway):
        donation = await _donation(db, "pi_p", DonationStatus.SUCCEEDED)
        mock_gateway.create_refund.return_value = ProviderRefund(id="re_2", amount=2500, status="succeeded")

        refunded, refund = await DonationService(db, mock_gateway).refund(donation.id, amount_cents=2500)

        assert refund.amount == 2500
        assert refunded.status == DonationStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_pending_donation_is_not_refundable(self, db, mock_gateway):
        donation = await _donation(db, "pi_n")

        with pytest.raises(NotRefundable):
            await DonationService(db, mock_gateway).refund(donation.id)

        mock_gateway.create_refund.assert_not_called()

    @pytest.mark.asyncio
    async def test_refund_above_donation_amount_rejected(self, db, mock_gateway):
        donation = await _donation(db, "pi_big", DonationStatus.SUCCEEDED)

        with pytest.raises(ValidationError) as exc_info:
            await DonationService(db, mock_gateway).refund(donation.id, amount_cents=10001)

        assert exc_info.value.field == "amountCents"
        mock_gateway.create_refund.assert_not_called()


class TestLedgerReads:

    @pytest.mark.asyncio
    async def test_get_donation_includes_donor(self, db, mock_gateway):
        donation = await _donation(db, "pi_g")
        donor_id = await DonorRepository(db).upsert_by_email(DonorUpsert(email="g@h.com", first_name="Grace", last_name="Hopper"))
        await DonationRepository(db).update(donation.id, DonationUpdate(donor_id=donor_id))
        await db.commit()

        detail = await DonationService(db, mock_gateway).get_donation(donation.id)

        assert detail.donor_email == "g@h.com"
        assert detail.donor_first_name == "Grace"

    @pytest.mark.asyncio
    async def test_missing_donation(self, db, mock_gateway):
        with pytest.raises(DonationNotFound):
            await DonationService(db, mock_gateway).get_donation(str(uuid.uuid4()))

    def test_client_config(self, mock_gateway):
        config = DonationService(None, mock_gateway).client_config()

        assert config.publishable_key == "pk_test_123"
        assert config.currency == "usd"
        assert config.minimum_amount_cents == 50
