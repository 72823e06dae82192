"""Donations feature module"""

from app.features.donations.domain import DonationStatus, FeeBreakdown, TransitionOutcome
from app.features.donations.fees import calculate_fees
from app.features.donations.gateway import StripePaymentGateway
from app.features.donations.ledger import DonationLedger
from app.features.donations.service import CheckoutOrchestrator, DonationService
from app.features.donations.webhook_service import DonationWebhookService, DispatchResult
from app.features.donations.reconciliation import ReconciliationSweep

# Import routers last (they depend on everything above)
from app.features.donations.api import (
    donations_router,
    donors_router,
    webhooks_router,
    register_exception_handlers,
)

__all__ = [
    "donations_router",
    "donors_router",
    "webhooks_router",
    "register_exception_handlers",
    "calculate_fees",
    "CheckoutOrchestrator",
    "DispatchResult",
    "DonationLedger",
    "DonationService",
    "DonationStatus",
    "DonationWebhookService",
    "FeeBreakdown",
    "ReconciliationSweep",
    "StripePaymentGateway",
    "TransitionOutcome",
]
