"""Donations repositories"""
from .catalog import Campaign, CampaignCatalog, CampaignRepository, Participant, ParticipantRepository
from .donations import DonationRepository
from .donors import DonorRepository
from .webhook_events import WebhookEventRepository

__all__ = [
    'Campaign',
    'CampaignCatalog',
    'CampaignRepository',
    'DonationRepository',
    'DonorRepository',
    'Participant',
    'ParticipantRepository',
    'WebhookEventRepository',
]
