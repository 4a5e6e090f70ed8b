"""
Database service for the tee-sheet tables.

This module provides async operations over the tee-time cache, booking
slots, provider tokens, course links and customer links, converting between
the Pydantic schemas used by services and the SQLAlchemy records.
"""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from teesheet.models.database import (
    AsyncSessionLocal,
    BookingSlotRecord,
    ProviderAuthTokenRecord,
    ProviderCourseLinkRecord,
    TeeTimeRecord,
    UserProviderCourseLinkRecord,
)
from teesheet.models.schemas import (
    BookingSlot,
    CustomerRef,
    ProviderCourseLink,
    TeeTime,
)

logger = logging.getLogger(__name__)

# Columns the indexer may overwrite; resale inventory and identity stay put.
PROVIDER_OWNED_COLUMNS = (
    "course_id",
    "number_of_holes",
    "date",
    "time",
    "max_players_per_booking",
    "available_first_hand_spots",
    "green_fee_per_player",
    "cart_fee_per_player",
    "green_fee_tax_per_player",
    "cart_fee_tax_per_player",
    "provider_date",
)

UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class DatabaseService:
    """
    Provides database operations for the tee-sheet layer.

    Tee-time writes are keyed on provider_tee_time_id: inserts that collide
    with an existing row update it instead, so overlapping index runs for
    the same course never create duplicates.
    """

    def _tee_time_to_values(self, tee_time: TeeTime) -> dict:
        return tee_time.model_dump()

    def _provider_owned_values(self, tee_time: TeeTime) -> dict:
        values = tee_time.model_dump(include=set(PROVIDER_OWNED_COLUMNS))
        values["updated_at"] = datetime.utcnow()
        return values

    def _record_to_link(self, record: ProviderCourseLinkRecord) -> ProviderCourseLink:
        return ProviderCourseLink(
            id=record.id,  # type: ignore[arg-type]
            course_id=record.course_id,  # type: ignore[arg-type]
            provider_id=record.provider_id,  # type: ignore[arg-type]
            provider_course_id=record.provider_course_id,  # type: ignore[arg-type]
            provider_tee_sheet_id=record.provider_tee_sheet_id or "",  # type: ignore[arg-type]
            provider_course_configuration=record.provider_course_configuration or "{}",  # type: ignore[arg-type]
            timezone=record.timezone or "America/Chicago",  # type: ignore[arg-type]
            last_indexed_at=record.last_indexed_at,  # type: ignore[arg-type]
            day_last_indexed=record.day_last_indexed or {},  # type: ignore[arg-type]
        )

    # Tee times

    async def get_tee_time(self, tee_time_id: str) -> TeeTime | None:
        async with AsyncSessionLocal() as db:
            record = await db.get(TeeTimeRecord, tee_time_id)
            return TeeTime.model_validate(record) if record else None

    async def get_tee_time_by_provider_id(self, provider_tee_time_id: str) -> TeeTime | None:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(TeeTimeRecord).where(
                    TeeTimeRecord.provider_tee_time_id == provider_tee_time_id
                )
            )
            record = result.scalar_one_or_none()
            return TeeTime.model_validate(record) if record else None

    async def get_tee_times_for_day(self, course_id: str, day: str) -> list[TeeTime]:
        """
        Get a course's cached tee times for one provider-local day.

        Args:
            course_id: Local course id.
            day: ISO date (YYYY-MM-DD), matched against the start of
                provider_date.
        """
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(TeeTimeRecord)
                .where(TeeTimeRecord.course_id == course_id)
                .where(TeeTimeRecord.provider_date.like(f"{day}%"))
                .order_by(TeeTimeRecord.time)
            )
            return [TeeTime.model_validate(r) for r in result.scalars().all()]

    async def insert_tee_times(
        self, tee_times: list[TeeTime], use_upsert: bool | None = None
    ) -> int:
        """
        Insert new tee times, treating provider_tee_time_id as the key.

        Uses INSERT ... ON CONFLICT DO UPDATE where the dialect supports it,
        otherwise checks which provider ids exist and updates those rows
        instead of inserting them.

        Returns:
            Number of rows written.
        """
        if not tee_times:
            return 0

        async with AsyncSessionLocal() as db:
            dialect = db.bind.dialect.name if db.bind is not None else ""
            if use_upsert is None:
                use_upsert = dialect in UPSERT_INSERTS

            if use_upsert:
                written = await self._upsert_tee_times(db, dialect, tee_times)
            else:
                written = await self._insert_or_update_tee_times(db, tee_times)
            await db.commit()

        logger.info(f"Inserted {written} tee times (upsert={use_upsert})")
        return written

    async def _upsert_tee_times(
        self, db: AsyncSession, dialect: str, tee_times: list[TeeTime]
    ) -> int:
        insert = UPSERT_INSERTS[dialect]
        stmt = insert(TeeTimeRecord).values([self._tee_time_to_values(t) for t in tee_times])
        set_ = {column: stmt.excluded[column] for column in PROVIDER_OWNED_COLUMNS}
        set_["updated_at"] = datetime.utcnow()
        stmt = stmt.on_conflict_do_update(
            index_elements=[TeeTimeRecord.provider_tee_time_id],
            set_=set_,
        )
        await db.execute(stmt)
        return len(tee_times)

    async def _insert_or_update_tee_times(
        self, db: AsyncSession, tee_times: list[TeeTime]
    ) -> int:
        provider_ids = [t.provider_tee_time_id for t in tee_times]
        result = await db.execute(
            select(TeeTimeRecord.provider_tee_time_id).where(
                TeeTimeRecord.provider_tee_time_id.in_(provider_ids)
            )
        )
        existing = set(result.scalars().all())

        for tee_time in tee_times:
            if tee_time.provider_tee_time_id in existing:
                await db.execute(
                    update(TeeTimeRecord)
                    .where(TeeTimeRecord.provider_tee_time_id == tee_time.provider_tee_time_id)
                    .values(**self._provider_owned_values(tee_time))
                )
            else:
                db.add(TeeTimeRecord(**self._tee_time_to_values(tee_time)))
        return len(tee_times)

    async def update_tee_times(self, tee_times: list[TeeTime]) -> int:
        """Overwrite provider-owned columns of existing rows, matched by id."""
        if not tee_times:
            return 0

        async with AsyncSessionLocal() as db:
            for tee_time in tee_times:
                await db.execute(
                    update(TeeTimeRecord)
                    .where(TeeTimeRecord.id == tee_time.id)
                    .values(**self._provider_owned_values(tee_time))
                )
            await db.commit()

        logger.info(f"Updated {len(tee_times)} tee times")
        return len(tee_times)

    async def zero_first_hand_spots(self, tee_time_ids: list[str]) -> int:
        """Mark tee times as gone from the provider without deleting them."""
        if not tee_time_ids:
            return 0

        async with AsyncSessionLocal() as db:
            await db.execute(
                update(TeeTimeRecord)
                .where(TeeTimeRecord.id.in_(tee_time_ids))
                .values(available_first_hand_spots=0, updated_at=datetime.utcnow())
            )
            await db.commit()

        logger.info(f"Zeroed first-hand spots on {len(tee_time_ids)} tee times")
        return len(tee_time_ids)

    # Booking slots

    async def create_booking_slots(self, slots: list[BookingSlot]) -> list[BookingSlot]:
        async with AsyncSessionLocal() as db:
            for slot in slots:
                db.add(BookingSlotRecord(**slot.model_dump()))
            await db.commit()
        logger.info(f"Created {len(slots)} booking slots")
        return slots

    async def get_booking_slots(self, booking_id: str) -> list[BookingSlot]:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(BookingSlotRecord)
                .where(BookingSlotRecord.booking_id == booking_id)
                .order_by(BookingSlotRecord.slot_position)
            )
            return [BookingSlot.model_validate(r) for r in result.scalars().all()]

    # Provider tokens

    async def save_provider_auth_token(
        self, provider_id: str, access_token: str, refresh_token: str | None = None
    ) -> None:
        async with AsyncSessionLocal() as db:
            db.add(
                ProviderAuthTokenRecord(
                    provider_id=provider_id,
                    access_token=access_token,
                    refresh_token=refresh_token,
                )
            )
            await db.commit()

    async def get_latest_provider_auth_token(
        self, provider_id: str
    ) -> ProviderAuthTokenRecord | None:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ProviderAuthTokenRecord)
                .where(ProviderAuthTokenRecord.provider_id == provider_id)
                .order_by(
                    ProviderAuthTokenRecord.created_at.desc(),
                    ProviderAuthTokenRecord.id.desc(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    # Provider course links

    async def create_provider_course_link(self, link: ProviderCourseLink) -> ProviderCourseLink:
        async with AsyncSessionLocal() as db:
            record = ProviderCourseLinkRecord(
                id=link.id,
                course_id=link.course_id,
                provider_id=link.provider_id,
                provider_course_id=link.provider_course_id,
                provider_tee_sheet_id=link.provider_tee_sheet_id,
                provider_course_configuration=link.provider_course_configuration,
                timezone=link.timezone,
                last_indexed_at=link.last_indexed_at,
                day_last_indexed={k: v.isoformat() for k, v in link.day_last_indexed.items()},
            )
            db.add(record)
            await db.commit()
            await db.refresh(record)
            return self._record_to_link(record)

    async def get_provider_course_link(self, link_id: str) -> ProviderCourseLink | None:
        async with AsyncSessionLocal() as db:
            record = await db.get(ProviderCourseLinkRecord, link_id)
            return self._record_to_link(record) if record else None

    async def get_provider_course_link_for_course(
        self, course_id: str
    ) -> ProviderCourseLink | None:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ProviderCourseLinkRecord)
                .where(ProviderCourseLinkRecord.course_id == course_id)
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return self._record_to_link(record) if record else None

    async def get_next_provider_course_link(self) -> ProviderCourseLink | None:
        """Get the link indexed longest ago; never-indexed links come first."""
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ProviderCourseLinkRecord)
                .order_by(
                    ProviderCourseLinkRecord.last_indexed_at.is_not(None),
                    ProviderCourseLinkRecord.last_indexed_at,
                )
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return self._record_to_link(record) if record else None

    async def mark_provider_course_link_indexed(
        self, link_id: str, days: list[str], indexed_at: datetime
    ) -> ProviderCourseLink:
        async with AsyncSessionLocal() as db:
            record = await db.get(ProviderCourseLinkRecord, link_id)
            if not record:
                raise ValueError(f"Provider course link {link_id} not found")

            day_last_indexed = dict(record.day_last_indexed or {})
            for day in days:
                day_last_indexed[day] = indexed_at.isoformat()
            record.day_last_indexed = day_last_indexed  # type: ignore[assignment]
            record.last_indexed_at = indexed_at  # type: ignore[assignment]

            await db.commit()
            await db.refresh(record)
            return self._record_to_link(record)

    # Provider customers

    async def get_user_provider_course_link(
        self, user_id: str, provider_id: str, course_id: str
    ) -> CustomerRef | None:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(UserProviderCourseLinkRecord)
                .where(UserProviderCourseLinkRecord.user_id == user_id)
                .where(UserProviderCourseLinkRecord.provider_id == provider_id)
                .where(UserProviderCourseLinkRecord.course_id == course_id)
                .limit(1)
            )
            record = result.scalar_one_or_none()
            if not record:
                return None
            return CustomerRef(
                customer_id=record.customer_id,  # type: ignore[arg-type]
                account_number=record.provider_account_number,  # type: ignore[arg-type]
            )

    async def save_user_provider_course_link(
        self, user_id: str, provider_id: str, course_id: str, customer: CustomerRef
    ) -> None:
        async with AsyncSessionLocal() as db:
            db.add(
                UserProviderCourseLinkRecord(
                    user_id=user_id,
                    provider_id=provider_id,
                    course_id=course_id,
                    customer_id=customer.customer_id,
                    provider_account_number=customer.account_number,
                )
            )
            await db.commit()


database_service = DatabaseService()
