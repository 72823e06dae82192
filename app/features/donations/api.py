"""Donations API endpoints: checkout, confirmation, refunds, ledger queries and Stripe webhooks"""
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.features.donations.errors import DonationError, ProviderNotConfigured
from app.features.donations.fees import calculate_fees
from app.features.donations.domain import FeeBreakdown
from app.features.donations.gateway import StripePaymentGateway
from app.features.donations.reconciliation import ReconciliationSweep
from app.features.donations.repositories.catalog import CampaignCatalog
from app.features.donations.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ClientConfigResponse,
    ConfirmRequest,
    ConfirmResponse,
    DonationDetailResponse,
    DonationListResponse,
    DonationResponse,
    DonationStatsResponse,
    PaymentIntentResponse,
    PruneResponse,
    RefundRequest,
    RefundResponse,
    SweepResponse,
    WebhookAck,
    WebhookEventResponse,
)
from app.features.donations.service import CheckoutOrchestrator, DonationService
from app.features.donations.webhook_service import DonationWebhookService
from app.infra.supabase import SupabaseNotConfigured, get_supabase_client
from app.middleware.auth import require_admin

logger = logging.getLogger(__name__)

donations_router = APIRouter(prefix="/donations", tags=["donations"])
donors_router = APIRouter(prefix="/donors", tags=["donations"])
webhooks_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ============================================================================
# DEPENDENCIES
# ============================================================================

@lru_cache(maxsize=1)
def get_gateway() -> StripePaymentGateway:
    """One gateway per process, built from configuration"""
    return StripePaymentGateway()


def get_catalog() -> CampaignCatalog:
    try:
        return CampaignCatalog(get_supabase_client())
    except SupabaseNotConfigured as e:
        logger.error(f"Campaign catalog unavailable: {e}")
        raise ProviderNotConfigured("Campaign catalog is not configured")


def get_checkout_orchestrator(
    db: AsyncSession = Depends(get_db),
    gateway: StripePaymentGateway = Depends(get_gateway),
    catalog: CampaignCatalog = Depends(get_catalog),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, gateway, catalog)


def get_donation_service(
    db: AsyncSession = Depends(get_db),
    gateway: StripePaymentGateway = Depends(get_gateway),
) -> DonationService:
    return DonationService(db, gateway)


def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    gateway: StripePaymentGateway = Depends(get_gateway),
) -> DonationWebhookService:
    return DonationWebhookService(db, gateway)


def get_reconciliation_sweep(
    db: AsyncSession = Depends(get_db),
    gateway: StripePaymentGateway = Depends(get_gateway),
) -> ReconciliationSweep:
    return ReconciliationSweep(db, gateway)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

async def donation_error_handler(request: Request, exc: DonationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "field": exc.field})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Validation error", "details": details}),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(DonationError, donation_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)


# ============================================================================
# DONATION ENDPOINTS
# ============================================================================

@donations_router.post("/checkout", response_model=CheckoutResponse, status_code=201)
async def create_checkout(
    req: CheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="idempotency-key"),
    orchestrator: CheckoutOrchestrator = Depends(get_checkout_orchestrator),
):
    """
    Start a donation.

    Creates the Stripe PaymentIntent and a pending donation. The browser
    completes payment with the returned client secret; the donation is only
    marked succeeded by a webhook or a confirm call that checks with Stripe.
    """
    result = await orchestrator.create_checkout(req, idempotency_key=idempotency_key)
    return CheckoutResponse(
        payment_intent=PaymentIntentResponse.model_validate(result.intent.model_dump()),
        donation=DonationResponse.model_validate(result.donation),
        fee_breakdown=result.fees,
    )


@donations_router.post("/confirm", response_model=ConfirmResponse)
async def confirm_donation(
    req: ConfirmRequest,
    service: DonationService = Depends(get_donation_service),
):
    """Reconcile a donation with Stripe after the client reports completion"""
    donation, intent = await service.confirm(req.payment_intent_id)
    return ConfirmResponse(
        donation=DonationResponse.model_validate(donation),
        provider_status=intent.status,
    )


@donations_router.get("/fees/calculate", response_model=FeeBreakdown)
async def calculate_fee_preview(amount: int = Query(..., ge=0)):
    """Fee breakdown for a prospective amount in cents"""
    return calculate_fees(amount)


@donations_router.get("/config", response_model=ClientConfigResponse)
async def get_client_config(service: DonationService = Depends(get_donation_service)):
    return service.client_config()


@donations_router.get("/campaign/{campaign_id}", response_model=DonationListResponse)
async def list_campaign_donations(
    campaign_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: DonationService = Depends(get_donation_service),
):
    donations = await service.list_for_campaign(campaign_id, limit, offset)
    return DonationListResponse(
        donations=[DonationDetailResponse.model_validate(d) for d in donations],
        limit=limit,
        offset=offset,
    )


@donations_router.get("/campaign/{campaign_id}/stats", response_model=DonationStatsResponse)
async def get_campaign_stats(
    campaign_id: str,
    service: DonationService = Depends(get_donation_service),
):
    stats = await service.campaign_stats(campaign_id)
    return DonationStatsResponse.model_validate(stats)


@donations_router.get("/participant/{participant_id}", response_model=DonationListResponse)
async def list_participant_donations(
    participant_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: DonationService = Depends(get_donation_service),
):
    donations = await service.list_for_participant(participant_id, limit, offset)
    return DonationListResponse(
        donations=[DonationDetailResponse.model_validate(d) for d in donations],
        limit=limit,
        offset=offset,
    )


@donations_router.post("/{donation_id}/refund", response_model=RefundResponse)
async def refund_donation(
    donation_id: str,
    req: RefundRequest,
    idempotency_key: Optional[str] = Header(None, alias="idempotency-key"),
    admin_id: str = Depends(require_admin),
    service: DonationService = Depends(get_donation_service),
):
    """Refund a succeeded donation in full or in part. Requires: admin role"""
    logger.info(f"Admin {admin_id} refunding donation {donation_id}")
    donation, refund = await service.refund(
        donation_id,
        amount_cents=req.amount_cents,
        reason=req.reason,
        idempotency_key=idempotency_key,
    )
    return RefundResponse(
        refund_id=refund.id,
        amount_cents=refund.amount,
        status=refund.status,
        donation=DonationResponse.model_validate(donation),
    )


@donations_router.get("/{donation_id}", response_model=DonationDetailResponse)
async def get_donation(
    donation_id: str,
    service: DonationService = Depends(get_donation_service),
):
    donation = await service.get_donation(donation_id)
    return DonationDetailResponse.model_validate(donation)


@donors_router.get("/{donor_id}/donations", response_model=DonationListResponse)
async def list_donor_donations(
    donor_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: DonationService = Depends(get_donation_service),
):
    """A donor's succeeded donations, newest first"""
    donations = await service.list_for_donor(donor_id, limit, offset)
    return DonationListResponse(
        donations=[DonationDetailResponse.model_validate(d) for d in donations],
        limit=limit,
        offset=offset,
    )


# ============================================================================
# STRIPE WEBHOOK ENDPOINTS
# ============================================================================

@webhooks_router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    service: DonationWebhookService = Depends(get_webhook_service),
):
    """
    Stripe webhook endpoint

    Handles:
    - payment_intent.succeeded: donation succeeded, donor recorded
    - payment_intent.payment_failed / payment_intent.canceled: donation failed
    - charge.refunded / charge.dispute.created: donation refunded

    Other event types are acknowledged and ignored. A 500 means the event was
    logged but not applied, so Stripe redelivers it.
    """
    # Signature is computed over the exact bytes Stripe sent
    payload = await request.body()
    logger.info(f"Received Stripe webhook request (payload size: {len(payload)} bytes)")

    try:
        outcome = await service.handle_webhook(payload, stripe_signature)
    except DonationError:
        raise
    except Exception:
        logger.error("Error processing Stripe webhook", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed", "field": None})

    return WebhookAck(outcome=outcome.value)


@webhooks_router.post("/reconcile", response_model=SweepResponse)
async def reconcile_events(
    limit: int = Query(100, ge=1, le=500),
    admin_id: str = Depends(require_admin),
    sweep: ReconciliationSweep = Depends(get_reconciliation_sweep),
):
    """Re-dispatch unprocessed webhook events and repair orphaned intents. Requires: admin role"""
    logger.info(f"Admin {admin_id} started reconciliation sweep (limit {limit})")
    return await sweep.run(limit=limit)


@webhooks_router.get("/events/unprocessed", response_model=List[WebhookEventResponse])
async def list_unprocessed_events(
    source: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin_id: str = Depends(require_admin),
    service: DonationWebhookService = Depends(get_webhook_service),
):
    events = await service.list_unprocessed(source=source, limit=limit)
    return [WebhookEventResponse.model_validate(e) for e in events]


@webhooks_router.delete("/events/processed", response_model=PruneResponse)
async def prune_processed_events(
    older_than_days: int = Query(30, ge=1, alias="olderThanDays"),
    admin_id: str = Depends(require_admin),
    service: DonationWebhookService = Depends(get_webhook_service),
):
    deleted = await service.prune_processed(older_than_days)
    logger.info(f"Admin {admin_id} pruned {deleted} processed webhook events")
    return PruneResponse(deleted=deleted)
