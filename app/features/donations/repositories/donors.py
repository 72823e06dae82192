"""SQLAlchemy repository for donors"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.dialect import insert_for
from app.db.models.donor import Donor as DonorORM
from app.features.donations.domain import Donor, DonorUpsert

DEFAULT_FIRST_NAME = "Anonymous"
DEFAULT_LAST_NAME = "Donor"


class DonorRepository:
    """Repository for donor identity operations using SQLAlchemy"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_by_email(self, data: DonorUpsert) -> str:
        """
        Create or merge a donor by unique email and return its id.

        Single INSERT ... ON CONFLICT (email) DO UPDATE, so two concurrent
        first-time donations from the same email converge on one row. Only
        fields that are known in `data` overwrite stored values.
        """
        now = datetime.now(timezone.utc)
        stmt = insert_for(self.db, DonorORM).values(
            id=str(uuid.uuid4()),
            email=data.email,
            first_name=data.first_name or DEFAULT_FIRST_NAME,
            last_name=data.last_name or DEFAULT_LAST_NAME,
            phone=data.phone,
            created_at=now,
            updated_at=now,
        )

        merge = {"updated_at": now}
        if data.first_name:
            merge["first_name"] = stmt.excluded.first_name
        if data.last_name:
            merge["last_name"] = stmt.excluded.last_name
        if data.phone:
            merge["phone"] = stmt.excluded.phone

        stmt = stmt.on_conflict_do_update(
            index_elements=[DonorORM.email],
            set_=merge,
        ).returning(DonorORM.id)

        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def find_by_email(self, email: str) -> Optional[Donor]:
        stmt = (
            select(DonorORM)
            .where(DonorORM.email == email.strip().lower())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        orm = result.scalar_one_or_none()
        return Donor.model_validate(orm) if orm else None

    async def find_by_id(self, donor_id: str) -> Optional[Donor]:
        stmt = (
            select(DonorORM)
            .where(DonorORM.id == donor_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        orm = result.scalar_one_or_none()
        return Donor.model_validate(orm) if orm else None
