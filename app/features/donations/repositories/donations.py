"""SQLAlchemy repository for donations

Methods never commit: the calling service owns the transaction, so a status
transition, the donor upsert it triggers and the webhook log update land in a
single commit.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.donation import Donation as DonationORM
from app.db.models.donor import Donor as DonorORM
from app.features.donations.domain import (
    ALLOWED_TRANSITIONS,
    Donation,
    DonationCreate,
    DonationStats,
    DonationStatus,
    DonationUpdate,
    DonationWithDonor,
    TransitionOutcome,
)

logger = logging.getLogger(__name__)


class DonationRepository:
    """Repository for donation ledger operations using SQLAlchemy"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, data: DonationCreate) -> Donation:
        """Insert a donation row. Unique violations surface as IntegrityError on flush."""
        now = datetime.now(timezone.utc)
        orm = DonationORM(**data.model_dump(mode="json"), created_at=now, updated_at=now)
        self.db.add(orm)
        await self.db.flush()
        await self.db.refresh(orm)
        return Donation.model_validate(orm)

    async def _find_one(self, criterion) -> Optional[Donation]:
        # populate_existing: rows may have changed under a conditional UPDATE in this session
        stmt = select(DonationORM).where(criterion).execution_options(populate_existing=True)
        orm = (await self.db.execute(stmt)).scalar_one_or_none()
        return Donation.model_validate(orm) if orm else None

    async def find_by_id(self, donation_id: str) -> Optional[Donation]:
        return await self._find_one(DonationORM.id == donation_id)

    async def find_by_intent_id(self, intent_id: str) -> Optional[Donation]:
        """Find donation by Stripe PaymentIntent ID"""
        return await self._find_one(DonationORM.stripe_payment_intent_id == intent_id)

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Donation]:
        return await self._find_one(DonationORM.checkout_idempotency_key == idempotency_key)

    async def find_with_donor(self, donation_id: str) -> Optional[DonationWithDonor]:
        """Donation joined with donor email and name"""
        stmt = (
            select(DonationORM, DonorORM)
            .outerjoin(DonorORM, DonationORM.donor_id == DonorORM.id)
            .where(DonationORM.id == donation_id)
        )
        row = (await self.db.execute(stmt)).first()
        if not row:
            return None
        return self._with_donor(row[0], row[1])

    async def update(self, donation_id: str, patch: DonationUpdate) -> Optional[Donation]:
        """Apply an explicit patch. Status changes go through transition() instead."""
        values = patch.model_dump(exclude_unset=True, exclude={"status"}, mode="json")
        if values:
            await self.db.execute(
                update(DonationORM).where(DonationORM.id == donation_id).values(**values)
            )
        return await self.find_by_id(donation_id)

    async def transition(self, intent_id: str, target: DonationStatus) -> TransitionOutcome:
        """
        Move the donation for an intent to `target` if its current status allows it.

        Conditional write: the WHERE clause carries the allowed source statuses,
        so of two concurrent writers only one sees a changed row; the other
        gets NOOP.
        """
        sources = [status.value for status in ALLOWED_TRANSITIONS[target]]
        stmt = (
            update(DonationORM)
            .where(
                and_(
                    DonationORM.stripe_payment_intent_id == intent_id,
                    DonationORM.status.in_(sources),
                )
            )
            .values(status=target.value)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 1:
            return TransitionOutcome.APPLIED

        current = await self.db.execute(
            select(DonationORM.status).where(DonationORM.stripe_payment_intent_id == intent_id)
        )
        status = current.scalar_one_or_none()
        if status is None:
            return TransitionOutcome.NOT_FOUND

        logger.debug(f"DonationRepository: {intent_id} stays {status} (requested {target.value})")
        return TransitionOutcome.NOOP

    async def list_by_campaign(self, campaign_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self._list_with_donor([DonationORM.campaign_id == campaign_id], limit, offset)

    async def list_by_participant(self, participant_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self._list_with_donor([DonationORM.participant_id == participant_id], limit, offset)

    async def list_succeeded_by_donor(self, donor_id: str, limit: int = 50, offset: int = 0) -> List[DonationWithDonor]:
        return await self._list_with_donor(
            [DonationORM.donor_id == donor_id, DonationORM.status == DonationStatus.SUCCEEDED.value],
            limit,
            offset,
        )

    async def campaign_stats(self, campaign_id: str) -> DonationStats:
        """Campaign aggregates; money sums only count succeeded donations"""
        succeeded = DonationORM.status == DonationStatus.SUCCEEDED.value

        def _sum_succeeded(column):
            return func.coalesce(func.sum(case((succeeded, column), else_=0)), 0)

        stmt = select(
            func.count(DonationORM.id),
            func.count(func.distinct(DonationORM.donor_id)),
            _sum_succeeded(DonationORM.amount_cents),
            _sum_succeeded(DonationORM.net_cents),
            _sum_succeeded(DonationORM.fee_cents),
            func.coalesce(func.avg(case((succeeded, DonationORM.amount_cents), else_=None)), 0),
        ).where(DonationORM.campaign_id == campaign_id)

        row = (await self.db.execute(stmt)).one()
        return DonationStats(
            total_donations=int(row[0]),
            unique_donors=int(row[1]),
            total_raised_cents=int(row[2]),
            total_net_cents=int(row[3]),
            total_fee_cents=int(row[4]),
            avg_donation_cents=int(round(float(row[5]))),
        )

    async def _list_with_donor(self, conditions: Iterable, limit: int, offset: int) -> List[DonationWithDonor]:
        stmt = (
            select(DonationORM, DonorORM)
            .outerjoin(DonorORM, DonationORM.donor_id == DonorORM.id)
            .where(and_(*conditions))
            .order_by(DonationORM.created_at.desc(), DonationORM.id.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).all()
        return [self._with_donor(donation, donor) for donation, donor in rows]

    @staticmethod
    def _with_donor(donation: DonationORM, donor: Optional[DonorORM]) -> DonationWithDonor:
        base = Donation.model_validate(donation).model_dump()
        return DonationWithDonor(
            **base,
            donor_email=donor.email if donor else None,
            donor_first_name=donor.first_name if donor else None,
            donor_last_name=donor.last_name if donor else None,
        )
