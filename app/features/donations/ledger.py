"""Donation ledger

Applies provider-reported outcomes to donations and merges donor identity.
Shared by the webhook path, client confirmation and the reconciliation sweep so
every writer goes through the same conditional transitions. Never commits.
"""
import logging
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.donations.domain import (
    ALLOWED_TRANSITIONS,
    DonationStatus,
    DonationUpdate,
    DonorUpsert,
    TransitionOutcome,
)
from app.features.donations.errors import StateError
from app.features.donations.gateway import ProviderIntent
from app.features.donations.repositories.donations import DonationRepository
from app.features.donations.repositories.donors import DonorRepository

logger = logging.getLogger(__name__)

# Provider intent status -> ledger status. Anything else leaves the donation pending.
INTENT_STATUS_TARGETS: Dict[str, DonationStatus] = {
    "succeeded": DonationStatus.SUCCEEDED,
    "canceled": DonationStatus.FAILED,
}


def donor_from_intent(intent: ProviderIntent) -> Optional[DonorUpsert]:
    """Donor identity carried by an intent, or None when it has no email"""
    email = intent.donor_email
    if not email or not email.strip():
        return None
    return DonorUpsert.from_full_name(email, intent.metadata.get("donor_name"))


class DonationLedger:
    """Status transitions and donor identity for donations"""

    def __init__(self, db: AsyncSession):
        self.donations = DonationRepository(db)
        self.donors = DonorRepository(db)

    async def upsert_donor(self, donor: DonorUpsert) -> str:
        donor_id = await self.donors.upsert_by_email(donor)
        logger.debug(f"DonationLedger: Upserted donor {donor_id} for {donor.email}")
        return donor_id

    async def apply_transition(
        self,
        intent_id: str,
        target: DonationStatus,
        donor: Optional[DonorUpsert] = None,
    ) -> TransitionOutcome:
        """
        Move the donation for `intent_id` to `target`.

        The donor is merged only by the writer whose transition to succeeded
        actually applied, so redelivered or concurrent events merge it once.
        """
        if target not in ALLOWED_TRANSITIONS:
            raise StateError(f"No transition leads to {target.value}")

        outcome = await self.donations.transition(intent_id, target)
        if outcome is not TransitionOutcome.APPLIED:
            return outcome

        logger.info(f"DonationLedger: Donation for {intent_id} is now {target.value}")

        if target is DonationStatus.SUCCEEDED and donor is not None:
            donor_id = await self.upsert_donor(donor)
            donation = await self.donations.find_by_intent_id(intent_id)
            if donation is not None:
                await self.donations.update(donation.id, DonationUpdate(donor_id=donor_id))

        return outcome
