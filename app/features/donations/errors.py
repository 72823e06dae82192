"""Error taxonomy for the Donations feature

Every error carries the HTTP status it maps to and, where one input triggered
it, the request field name so callers can point at it.
"""
from typing import Optional


class DonationError(Exception):
    """Base class for donation errors surfaced to API callers"""
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(DonationError):
    status_code = 400


class BelowMinimum(ValidationError):
    def __init__(self, minimum_cents: int):
        super().__init__(f"Minimum donation is {minimum_cents} cents", field="amountCents")


class AmountTooSmall(ValidationError):
    """Provider-imposed floor on intent amounts"""

    def __init__(self, minimum_cents: int):
        super().__init__(f"Payment amount must be at least {minimum_cents} cents", field="amountCents")


class CampaignNotActive(ValidationError):
    def __init__(self, campaign_id: str, status: Optional[str]):
        super().__init__(f"Campaign {campaign_id} is not active (status: {status})", field="campaignId")


class NotRefundable(ValidationError):
    pass


class NotFoundError(DonationError):
    status_code = 404


class CampaignNotFound(NotFoundError):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign {campaign_id} not found", field="campaignId")


class ParticipantMismatch(NotFoundError):
    def __init__(self, participant_id: str, campaign_id: str):
        super().__init__(
            f"Participant {participant_id} not found or not in campaign {campaign_id}",
            field="participantId",
        )


class DonationNotFound(NotFoundError):
    def __init__(self, reference: str):
        super().__init__(f"Donation {reference} not found")


class ConflictError(DonationError):
    status_code = 409


class GatewayError(DonationError):
    """Provider call failed (network, provider 4xx/5xx)"""
    status_code = 502


class ProviderNotConfigured(DonationError):
    status_code = 503

    def __init__(self, message: str = "Payment provider is not configured"):
        super().__init__(message)


class SignatureError(DonationError):
    status_code = 400


class InvalidSignature(SignatureError):
    def __init__(self, reason: str):
        super().__init__(f"Invalid webhook signature: {reason}")


class StateError(DonationError):
    """Illegal transition attempt. Callers treat it as a no-op, it is never surfaced."""
    status_code = 409
