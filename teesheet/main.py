import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from teesheet.api import bookings, health, jobs
from teesheet.config import settings
from teesheet.models.database import init_db
from teesheet.services.provider_service import provider_service

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()

    if not settings.scheduler_api_key and not settings.scheduler_service_account:
        logger.warning(
            "Neither SCHEDULER_API_KEY nor SCHEDULER_SERVICE_ACCOUNT is configured. "
            "The /jobs/index-tee-times endpoints will only accept OIDC tokens "
            "from any Google service account. Set one of them for production use."
        )

    yield

    await provider_service.close()


app = FastAPI(
    title="TeeSheet",
    description="Golf tee-sheet provider layer: indexing and booking across providers",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(bookings.router)
app.include_router(jobs.router)
