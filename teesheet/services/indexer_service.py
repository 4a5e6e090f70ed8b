"""
Tee-time indexer.

Pulls each course's live tee sheet from its provider, diffs it against the
stored rows and writes back only what changed. Days closer to today are
re-indexed more often than days further out.
"""

import logging
import traceback
from datetime import date as date_type
from datetime import datetime, timedelta

import pytz

from teesheet.config import settings
from teesheet.models.schemas import (
    CourseIndexResult,
    IndexResult,
    ProviderCourseLink,
    TeeTime,
)
from teesheet.providers.base import ProviderDataError, TeeSheetProvider
from teesheet.services.database_service import database_service
from teesheet.services.error_log_service import error_log_service
from teesheet.services.provider_service import provider_service

logger = logging.getLogger(__name__)

# Minimum time between indexes of a day, keyed by days ahead (today is 1).
INDEXING_SCHEDULE: dict[int, timedelta] = {
    1: timedelta(minutes=15),
    2: timedelta(minutes=30),
    3: timedelta(hours=1),
    4: timedelta(hours=2),
    5: timedelta(hours=4),
    6: timedelta(hours=5),
    7: timedelta(hours=6),
    8: timedelta(hours=7),
    9: timedelta(hours=8),
    10: timedelta(hours=9),
    11: timedelta(hours=10),
    12: timedelta(hours=11),
    13: timedelta(hours=12),
    14: timedelta(hours=13),
    15: timedelta(hours=14),
}


def should_index_day(
    days_ahead: int, last_indexed_at: datetime | None, now: datetime
) -> bool:
    if last_indexed_at is None:
        return True
    interval = INDEXING_SCHEDULE.get(days_ahead, INDEXING_SCHEDULE[max(INDEXING_SCHEDULE)])
    return now - last_indexed_at >= interval


class TeeTimeIndexer:
    async def index_day(
        self, provider: TeeSheetProvider, token: str, link: ProviderCourseLink, day: str
    ) -> IndexResult:
        """
        Diff one day of a provider's tee sheet against the stored rows.

        Stored rows missing from the feed that still have first-hand spots
        are zeroed rather than deleted, since resale inventory may still
        hang off them. Live rows are compared by projection, so a row is
        only written when a provider-owned field actually changed.

        Args:
            provider: Adapter for the link's provider.
            token: Token from provider.get_token().
            link: Course link being indexed.
            day: Course-local date, "YYYY-MM-DD".
        """
        existing = await database_service.get_tee_times_for_day(link.course_id, day)
        live = await provider.get_tee_times(
            token,
            link.provider_course_id,
            link.provider_tee_sheet_id,
            "0000",
            "2359",
            day,
        )

        stored_by_provider_id = {t.provider_tee_time_id: t for t in existing}
        live_ids: set[str] = set()
        result = IndexResult()

        for raw in live:
            provider_tee_time_id = provider.get_provider_tee_time_id(raw)
            live_ids.add(provider_tee_time_id)
            stored = stored_by_provider_id.get(provider_tee_time_id)

            try:
                projection = provider.to_projection(raw, link.course_id, stored)
            except ProviderDataError as e:
                logger.warning(
                    f"Skipping {link.provider_id} tee time {provider_tee_time_id}: {e}"
                )
                await error_log_service.error_log(
                    url="/TeeTimeIndexer/indexDay",
                    message="ERROR_MAPPING_TEE_TIME",
                    additional_details={
                        "link_id": link.id,
                        "day": day,
                        "provider_tee_time_id": provider_tee_time_id,
                        "error": str(e),
                    },
                )
                continue

            if stored is None:
                result.inserts.append(TeeTime.from_projection(projection))
            elif projection != stored.projection():
                result.updates.append(TeeTime.from_projection(projection, tee_time_id=stored.id))

        result.removals = [
            t.id
            for t in existing
            if t.provider_tee_time_id not in live_ids and t.available_first_hand_spots > 0
        ]

        logger.info(
            f"Indexed {link.provider_id} course {link.course_id} on {day}: "
            f"{len(result.inserts)} new, {len(result.updates)} changed, "
            f"{len(result.removals)} gone"
        )
        return result

    async def save_tee_times(self, result: IndexResult) -> int:
        """Apply an IndexResult and return the number of rows written."""
        if result.is_empty:
            return 0
        written = await database_service.insert_tee_times(result.inserts)
        written += await database_service.update_tee_times(result.updates)
        written += await database_service.zero_first_hand_spots(result.removals)
        return written

    def days_to_index(self, link: ProviderCourseLink, now: datetime) -> list[tuple[int, str]]:
        """List (days_ahead, "YYYY-MM-DD") for the link's window, starting today."""
        tz = pytz.timezone(link.timezone)
        today: date_type = pytz.utc.localize(now).astimezone(tz).date()
        return [
            (offset + 1, (today + timedelta(days=offset)).isoformat())
            for offset in range(settings.index_days_ahead)
        ]

    async def index_course(
        self,
        link: ProviderCourseLink,
        days: list[str] | None = None,
        now: datetime | None = None,
    ) -> CourseIndexResult:
        """
        Index every due day for one course link.

        The link's last_indexed_at is advanced after every attempt, including
        one where no provider or token could be obtained.

        Args:
            link: Course link to index.
            days: Explicit days to index, bypassing the schedule.
            now: Naive UTC reference time, defaults to utcnow.
        """
        now = now or datetime.utcnow()
        summary = CourseIndexResult(
            link_id=link.id, course_id=link.course_id, provider_id=link.provider_id
        )

        if days is not None:
            due = days
        else:
            due = []
            for days_ahead, day in self.days_to_index(link, now):
                if should_index_day(days_ahead, link.day_last_indexed.get(day), now):
                    due.append(day)
                else:
                    summary.days_skipped.append(day)

        try:
            provider, token = await provider_service.get_provider_and_key(link)
        except Exception as e:
            logger.exception(f"Error getting {link.provider_id} provider for link {link.id}: {e}")
            await error_log_service.error_log(
                url="/TeeTimeIndexer/indexCourse",
                message="ERROR_GETTING_PROVIDER",
                stack_trace=traceback.format_exc(),
                additional_details={"link_id": link.id, "provider_id": link.provider_id},
            )
            summary.days_failed.extend(due)
            due = []

        for day in due:
            try:
                result = await self.index_day(provider, token, link, day)
                summary.rows_written += await self.save_tee_times(result)
                summary.days_indexed.append(day)
            except Exception as e:
                logger.exception(f"Error indexing course {link.course_id} on {day}: {e}")
                await error_log_service.error_log(
                    url="/TeeTimeIndexer/indexCourse",
                    message="ERROR_INDEXING_DAY",
                    stack_trace=traceback.format_exc(),
                    additional_details={
                        "link_id": link.id,
                        "provider_id": link.provider_id,
                        "day": day,
                    },
                )
                summary.days_failed.append(day)

        await database_service.mark_provider_course_link_indexed(
            link.id, summary.days_indexed, now
        )
        return summary

    async def index_next_course(self) -> CourseIndexResult | None:
        link = await database_service.get_next_provider_course_link()
        if not link:
            logger.info("No provider course links to index")
            return None
        return await self.index_course(link)


tee_time_indexer = TeeTimeIndexer()
