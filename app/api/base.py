from fastapi import APIRouter
from app.api import health
from app.features.donations import donations_router, donors_router, webhooks_router

api_router = APIRouter()

# Include all sub-routers
api_router.include_router(health.router)
api_router.include_router(donations_router)
api_router.include_router(donors_router)
api_router.include_router(webhooks_router)
