"""SQLAlchemy ORM models"""

from app.db.models.donor import Donor
from app.db.models.donation import Donation
from app.db.models.webhook_event import WebhookEvent

__all__ = ["Donor", "Donation", "WebhookEvent"]
