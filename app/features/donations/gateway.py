"""Stripe payment gateway

The only module that talks to Stripe. Everything Stripe-shaped (metadata keys,
intent/refund objects, webhook signing) stays in here; the rest of the feature
works with the ProviderIntent / ProviderRefund / ProviderEvent models.

The gateway is an explicit instance holding its own credentials, so callers
receive it by injection and tests can substitute a double.
"""
import asyncio
import functools
import json
import logging
import uuid
from typing import Any, Callable, Dict, Optional, TypeVar

import stripe
from pydantic import BaseModel, Field

from app.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_CURRENCY,
    STRIPE_WEBHOOK_TOLERANCE,
)
from app.features.donations.domain import FeeBreakdown
from app.features.donations.errors import (
    AmountTooSmall,
    GatewayError,
    InvalidSignature,
    NotRefundable,
    ProviderNotConfigured,
    ValidationError,
)
from app.features.donations.fees import calculate_fees

logger = logging.getLogger(__name__)

# Stripe will not create an intent below $0.50
MINIMUM_AMOUNT_CENTS = 50
# Stripe metadata values are limited to 500 characters
METADATA_VALUE_LIMIT = 500

REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")

# Stripe error codes meaning the charge cannot be refunded
_NOT_REFUNDABLE_CODES = {
    "charge_already_refunded",
    "charge_disputed",
    "charge_not_refundable",
    "payment_intent_unexpected_state",
}


class ProviderIntent(BaseModel):
    """Provider-side payment intent"""
    id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str
    status: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    receipt_email: Optional[str] = None

    @property
    def donor_email(self) -> Optional[str]:
        """Email from our metadata, falling back to the receipt email"""
        return self.metadata.get("donor_email") or self.receipt_email


class ProviderRefund(BaseModel):
    """Provider-side refund"""
    id: str
    amount: int
    status: Optional[str] = None
    reason: Optional[str] = None
    payment_intent: Optional[str] = None


class ProviderEvent(BaseModel):
    """Signature-verified webhook event, parsed from the untouched raw body"""
    id: str
    type: str
    data_object: Dict[str, Any]
    payload: Dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Any) -> "ProviderEvent":
        """Build from a decoded event body; ValueError if it is not shaped like a Stripe event"""
        data = payload.get("data") if isinstance(payload, dict) else None
        data_object = data.get("object") if isinstance(data, dict) else None
        if not isinstance(data_object, dict) or not payload.get("id") or not payload.get("type"):
            raise ValueError("payload is not a Stripe event")
        return cls(id=payload["id"], type=payload["type"], data_object=data_object, payload=payload)


R = TypeVar("R")


async def call_provider(fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
    """Run a blocking Stripe SDK call on the default executor, off the event loop"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


def _truncate(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value[:METADATA_VALUE_LIMIT]


def intent_from_stripe(obj: Dict[str, Any]) -> ProviderIntent:
    """Map a Stripe PaymentIntent (object or webhook dict) to ProviderIntent"""
    metadata = obj.get("metadata") or {}
    return ProviderIntent(
        id=obj["id"],
        client_secret=obj.get("client_secret"),
        amount=int(obj.get("amount") or 0),
        currency=obj.get("currency") or STRIPE_CURRENCY,
        status=obj.get("status") or "unknown",
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
        receipt_email=obj.get("receipt_email"),
    )


class StripePaymentGateway:
    """Sole boundary to Stripe"""

    def __init__(
        self,
        api_key: str = STRIPE_SECRET_KEY,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
        currency: str = STRIPE_CURRENCY,
        webhook_tolerance: int = STRIPE_WEBHOOK_TOLERANCE,
    ):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self.currency = currency
        self._webhook_tolerance = webhook_tolerance

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderNotConfigured("Stripe is not configured. Please set STRIPE_SECRET_KEY.")

    def build_intent_metadata(
        self,
        campaign_id: str,
        fees: FeeBreakdown,
        participant_id: Optional[str] = None,
        donor_email: Optional[str] = None,
        donor_name: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict[str, str]:
        """Metadata attached to the intent; also what the reconciliation sweep rebuilds donations from"""
        metadata = {
            "campaign_id": campaign_id,
            "amount_cents": str(fees.amount_cents),
            "platform_fee_cents": str(fees.platform_fee_cents),
            "stripe_fee_cents": str(fees.provider_fee_cents),
            "total_fee_cents": str(fees.total_fee_cents),
            "net_cents": str(fees.net_cents),
        }
        optional = {
            "participant_id": participant_id,
            "donor_email": donor_email,
            "donor_name": donor_name,
            "message": message,
        }
        for key, value in optional.items():
            if value:
                metadata[key] = value

        return {key: _truncate(value) for key, value in metadata.items()}

    def create_intent(
        self,
        amount_cents: int,
        campaign_id: str,
        participant_id: Optional[str] = None,
        donor_email: Optional[str] = None,
        donor_name: Optional[str] = None,
        message: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        fees: Optional[FeeBreakdown] = None,
    ) -> ProviderIntent:
        """
        Create a PaymentIntent for a donation.

        Args:
            idempotency_key: Forwarded verbatim to Stripe. When absent a fresh
                random key is generated for this call only.

        Raises:
            AmountTooSmall: amount below Stripe's floor
            ProviderNotConfigured: no secret key
            GatewayError: Stripe call failed
        """
        self._require_configured()

        if amount_cents < MINIMUM_AMOUNT_CENTS:
            raise AmountTooSmall(MINIMUM_AMOUNT_CENTS)

        if fees is None:
            fees = calculate_fees(amount_cents)
        key = idempotency_key or str(uuid.uuid4())

        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "payment_method_types": ["card"],
            "capture_method": "automatic",
            "metadata": self.build_intent_metadata(
                campaign_id,
                fees,
                participant_id=participant_id,
                donor_email=donor_email,
                donor_name=donor_name,
                message=message,
            ),
            "description": f"Donation to campaign {campaign_id}",
        }
        if donor_email:
            params["receipt_email"] = donor_email

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key,
                idempotency_key=key,
                **params,
            )
        except stripe.StripeError as e:
            logger.error(f"StripePaymentGateway: Failed to create PaymentIntent for campaign {campaign_id}: {e}")
            raise GatewayError("Failed to create payment intent")

        logger.info(f"StripePaymentGateway: Created PaymentIntent {intent['id']} for {amount_cents} cents")
        return intent_from_stripe(intent)

    def get_intent(self, intent_id: str) -> ProviderIntent:
        """Fetch the provider's view of an intent"""
        self._require_configured()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self._api_key)
        except stripe.InvalidRequestError as e:
            logger.warning(f"StripePaymentGateway: PaymentIntent {intent_id} could not be retrieved: {e}")
            raise GatewayError(f"Payment intent {intent_id} could not be retrieved")
        except stripe.StripeError as e:
            logger.error(f"StripePaymentGateway: Failed to retrieve PaymentIntent {intent_id}: {e}")
            raise GatewayError("Failed to retrieve payment intent")
        return intent_from_stripe(intent)

    def create_refund(
        self,
        intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderRefund:
        """
        Refund all or part of a succeeded intent.

        Raises:
            NotRefundable: the underlying charge never succeeded or is already refunded
            GatewayError: Stripe call failed
        """
        self._require_configured()

        reason = reason or "requested_by_customer"
        if reason not in REFUND_REASONS:
            raise ValidationError(f"Refund reason must be one of {', '.join(REFUND_REASONS)}", field="reason")
        if amount_cents is not None and amount_cents <= 0:
            raise ValidationError("Refund amount must be positive", field="amountCents")

        intent = self.get_intent(intent_id)
        if intent.status != "succeeded":
            raise NotRefundable(f"Payment intent {intent_id} has not succeeded (status: {intent.status})")

        params: Dict[str, Any] = {"payment_intent": intent_id, "reason": reason}
        if amount_cents is not None:
            params["amount"] = amount_cents

        try:
            refund = stripe.Refund.create(
                api_key=self._api_key,
                idempotency_key=idempotency_key or str(uuid.uuid4()),
                **params,
            )
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) in _NOT_REFUNDABLE_CODES:
                raise NotRefundable(f"Payment intent {intent_id} is not refundable: {e.user_message or e}")
            logger.error(f"StripePaymentGateway: Refund rejected for {intent_id}: {e}")
            raise GatewayError("Failed to create refund")
        except stripe.StripeError as e:
            logger.error(f"StripePaymentGateway: Failed to create refund for {intent_id}: {e}")
            raise GatewayError("Failed to create refund")

        logger.info(f"StripePaymentGateway: Created refund {refund['id']} for {intent_id}")
        return ProviderRefund(
            id=refund["id"],
            amount=int(refund.get("amount") or 0),
            status=refund.get("status"),
            reason=refund.get("reason"),
            payment_intent=refund.get("payment_intent"),
        )

    def get_charge_intent_id(self, charge_id: str) -> Optional[str]:
        """Resolve the PaymentIntent a charge belongs to"""
        self._require_configured()
        try:
            charge = stripe.Charge.retrieve(charge_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.error(f"StripePaymentGateway: Failed to retrieve charge {charge_id}: {e}")
            raise GatewayError("Failed to retrieve charge")
        intent = charge.get("payment_intent")
        if isinstance(intent, dict):
            return intent.get("id")
        return intent

    def verify_signature(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str] = None,
    ) -> ProviderEvent:
        """
        Verify a webhook body against the Stripe-Signature header.

        Must be given the untouched raw request bytes. The event is parsed from
        those same bytes only after the signature checks out.

        Raises:
            InvalidSignature: missing header, tampered body, wrong secret,
                timestamp outside the tolerance window, or a body that is not
                a Stripe event
            ProviderNotConfigured: no webhook secret
        """
        if not signature_header:
            raise InvalidSignature("missing Stripe-Signature header")

        secret = secret or self._webhook_secret
        if not secret:
            raise ProviderNotConfigured("Webhook secret is not configured")

        try:
            payload_text = raw_payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload_text,
                signature_header,
                secret,
                tolerance=self._webhook_tolerance,
            )
            body = json.loads(payload_text)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e))
        except ValueError as e:
            raise InvalidSignature(f"unreadable payload ({e})")

        try:
            return ProviderEvent.from_payload(body)
        except ValueError as e:
            raise InvalidSignature(str(e))
