"""SQLAlchemy ORM model for donors table"""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from app.db.base import Base


class Donor(Base):
    """
    Recurring donor identity keyed by email.
    Rows are only ever written through an upsert on the unique email.
    """
    __tablename__ = "donors"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=False, unique=True, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Donor(id={self.id}, email='{self.email}')>"
