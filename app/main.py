import logging
from contextlib import asynccontextmanager

# Log configuration (before other imports)
# ruff: noqa: E402
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    force=True
)

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from app.api.base import api_router  # noqa: E402
from app.config import CORS_ALLOW_ORIGINS, PLATFORM_FEE_PERCENTAGE, STRIPE_CURRENCY  # noqa: E402
from app.db.session import engine  # noqa: E402
from app.features.donations import register_exception_handlers  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Donations Core starting (currency={STRIPE_CURRENCY}, "
        f"platform fee={PLATFORM_FEE_PERCENTAGE}%)"
    )
    yield
    await engine.dispose()
    logger.info("Donations Core stopped, database pool disposed")


app = FastAPI(
    title="Donations Core API",
    description="Donation checkout, Stripe reconciliation and the donation ledger",
    version="1.0.0",
    lifespan=lifespan,
)

# Browsers call checkout directly; webhooks come from Stripe and ignore CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
def read_root():
    return {"service": "donations-core", "docs": "/docs", "version": app.version}
