"""Campaign catalog read through Supabase

Campaigns and participants are owned by another service; donations only read
them to validate a checkout.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict
from supabase import Client  # type: ignore

from app.infra.supabase.repositories.base import ReadOnlyRepository

ACTIVE_CAMPAIGN_STATUS = "active"


class Campaign(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    title: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_CAMPAIGN_STATUS


class Participant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    campaign_id: str


class CampaignRepository(ReadOnlyRepository[Campaign]):
    """Repository for campaign lookups"""

    def __init__(self, client: Client):
        super().__init__(client, "campaigns", Campaign)


class ParticipantRepository(ReadOnlyRepository[Participant]):
    """Repository for participant lookups"""

    def __init__(self, client: Client):
        super().__init__(client, "participants", Participant)

    async def find_in_campaign(self, participant_id: str, campaign_id: str) -> Optional[Participant]:
        participant = await self.find_by_id(participant_id)
        if participant is None or participant.campaign_id != campaign_id:
            return None
        return participant


class CampaignCatalog:
    """Read-only view of the campaign catalog used by checkout"""

    def __init__(self, client: Client):
        self.campaigns = CampaignRepository(client)
        self.participants = ParticipantRepository(client)

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return await self.campaigns.find_by_id(campaign_id)

    async def get_participant(self, participant_id: str, campaign_id: str) -> Optional[Participant]:
        return await self.participants.find_in_campaign(participant_id, campaign_id)
