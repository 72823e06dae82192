"""Health check and monitoring endpoints"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db, get_pool_stats
from app.features.donations.api import get_gateway
from app.features.donations.gateway import StripePaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("/pool")
async def get_pool_health():
    """
    Get connection pool health statistics.

    Returns pool utilization, connection counts, and health status.
    """
    stats = get_pool_stats()
    in_use = stats["checked_out"]
    total_capacity = stats["size"] + stats["max_overflow"]
    utilization = (in_use / total_capacity * 100) if total_capacity > 0 else 0

    if utilization >= 90:
        status = "critical"
    elif utilization >= 80:
        status = "warning"
    else:
        status = "healthy"

    return {
        "status": status,
        "pool_size": stats["size"],
        "max_overflow": stats["max_overflow"],
        "available": stats["checked_in"],
        "in_use": in_use,
        "overflow": stats["overflow"],
        "invalid": stats["invalid"],
        "utilization_percent": round(utilization, 2),
        "total_capacity": total_capacity,
    }


@router.get("")
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: StripePaymentGateway = Depends(get_gateway),
):
    """Liveness plus a database round trip; Stripe is reported, not probed"""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": "donations-core",
        "database": database,
        "payments_configured": gateway.is_configured,
    }
