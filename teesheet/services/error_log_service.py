"""
Durable error log for provider and indexing failures.

Every failure path in the provider layer records a structured entry here
before raising or returning a sentinel. Entries go to the application log and
to the error_logs table.
"""

import json
import logging
from typing import Any

from teesheet.models.database import AsyncSessionLocal, ErrorLogRecord

logger = logging.getLogger(__name__)


class ErrorLogService:
    async def error_log(
        self,
        url: str,
        message: str,
        user_id: str = "",
        stack_trace: str = "",
        additional_details: dict[str, Any] | None = None,
        user_agent: str = "",
    ) -> None:
        """
        Record a failure.

        Args:
            url: Logical location of the failure, e.g. "/ForeUp/createBooking".
            message: Stable error code, e.g. "ERROR_CREATING_BOOKING".
            user_id: User the failing operation ran for, if any.
            stack_trace: Formatted traceback, if one was captured.
            additional_details: Request context; serialized to JSON.
            user_agent: Caller user agent, if known.
        """
        details_json = json.dumps(additional_details or {}, default=str)
        logger.error(f"{message} at {url}: {details_json}")

        try:
            async with AsyncSessionLocal() as db:
                db.add(
                    ErrorLogRecord(
                        user_id=user_id,
                        url=url,
                        user_agent=user_agent,
                        message=message,
                        stack_trace=stack_trace,
                        additional_details_json=details_json,
                    )
                )
                await db.commit()
        except Exception:
            logger.exception(f"Failed to persist error log entry {message} at {url}")


error_log_service = ErrorLogService()
