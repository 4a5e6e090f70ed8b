"""
Scheduled job endpoints for Cloud Scheduler integration.

Cloud Scheduler calls these endpoints on a short cadence to keep the stored
tee sheets in step with the providers. Each call indexes one course link,
so the oldest-indexed course is always picked up next. These endpoints are
secured with OIDC token authentication (preferred) or a legacy API key.
"""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime
from enum import Enum

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel

from teesheet.config import settings
from teesheet.models.schemas import CourseIndexResult
from teesheet.services.database_service import database_service
from teesheet.services.indexer_service import tee_time_indexer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

INDEX_COURSE_TIMEOUT_SECONDS = 300


class JobExecutionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    ERROR = "error"


class IndexJobResult(BaseModel):
    executed_at: datetime
    status: JobExecutionStatus
    course: CourseIndexResult | None = None
    error: str | None = None


def verify_oidc_token(authorization: str, request: Request) -> bool:
    """
    Verify OIDC token from Cloud Scheduler.

    Returns True if the token is valid and from the expected service account.
    """
    if not authorization.startswith("Bearer "):
        return False

    token = authorization[7:]

    try:
        claims = id_token.verify_oauth2_token(  # type: ignore[no-untyped-call]
            token, google_requests.Request()
        )

        email = claims.get("email", "")
        if settings.scheduler_service_account and email != settings.scheduler_service_account:
            logger.warning(
                f"OIDC token email mismatch: expected {settings.scheduler_service_account}, got {email}"
            )
            return False

        logger.info(f"OIDC token verified for service account: {email}")
        return True
    except google_auth_exceptions.GoogleAuthError as e:
        logger.warning(f"OIDC token verification failed: {e}")
        return False
    except ValueError as e:
        logger.warning(f"OIDC token validation error: {e}")
        return False


def verify_scheduler_auth(
    request: Request,
    authorization: str | None = Header(None, description="Bearer token for OIDC authentication"),
    x_scheduler_api_key: str | None = Header(
        None, description="Legacy API key for scheduler authentication"
    ),
) -> None:
    """Verify scheduler authentication using OIDC token (preferred) or legacy API key."""
    if authorization:
        if verify_oidc_token(authorization, request):
            return

    if x_scheduler_api_key:
        if settings.scheduler_api_key and x_scheduler_api_key == settings.scheduler_api_key:
            return
        raise HTTPException(
            status_code=401,
            detail="Invalid scheduler API key",
        )

    raise HTTPException(
        status_code=401,
        detail="Authentication required. Provide OIDC token or X-Scheduler-API-Key header.",
    )


def _status_for(course: CourseIndexResult) -> JobExecutionStatus:
    if course.days_failed and not course.days_indexed:
        return JobExecutionStatus.ERROR
    if course.days_failed:
        return JobExecutionStatus.PARTIAL
    return JobExecutionStatus.SUCCESS


async def _run_index_job(
    job: Awaitable[CourseIndexResult | None], description: str
) -> IndexJobResult:
    executed_at = datetime.utcnow()
    try:
        course = await asyncio.wait_for(job, timeout=INDEX_COURSE_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.error(f"Indexing {description} timed out after {INDEX_COURSE_TIMEOUT_SECONDS}s")
        return IndexJobResult(
            executed_at=executed_at,
            status=JobExecutionStatus.TIMEOUT,
            error=f"Indexing timed out after {INDEX_COURSE_TIMEOUT_SECONDS} seconds",
        )
    except Exception as e:
        logger.exception(f"Indexing {description} failed with error: {e}")
        return IndexJobResult(
            executed_at=executed_at, status=JobExecutionStatus.ERROR, error=str(e)
        )

    if course is None:
        return IndexJobResult(executed_at=executed_at, status=JobExecutionStatus.SKIPPED)
    return IndexJobResult(executed_at=executed_at, status=_status_for(course), course=course)


@router.post("/index-tee-times", response_model=IndexJobResult)
async def index_tee_times(
    _: None = Depends(verify_scheduler_auth),
) -> IndexJobResult:
    """
    Index the course link that was indexed longest ago.

    Only days that are due under the indexing schedule are fetched, so
    calling this more often than needed costs little provider traffic.
    """
    return await _run_index_job(tee_time_indexer.index_next_course(), "next course")


@router.post("/index-tee-times/{link_id}", response_model=IndexJobResult)
async def index_course_tee_times(
    link_id: str,
    _: None = Depends(verify_scheduler_auth),
) -> IndexJobResult:
    link = await database_service.get_provider_course_link(link_id)
    if not link:
        raise HTTPException(status_code=404, detail="Provider course link not found")

    return await _run_index_job(tee_time_indexer.index_course(link), f"course link {link_id}")
