"""
SQLAlchemy database models for persistent storage.

This module defines the tables the tee-sheet layer reads and writes: the
canonical tee-time cache kept in sync with each provider, the player slots
created after a provider booking, the provider token audit trail, the
course/provider links that drive indexing, and the durable error log.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from teesheet.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TeeTimeRecord(Base):
    """
    Database model for the canonical tee-time cache.

    One row per provider tee time. Rows are never deleted by indexing: a
    tee time that disappears from the provider feed is kept with zero
    first-hand spots so resale inventory and booking references survive.

    Columns:
        id: Local identity (UUID string).
        provider_tee_time_id: The provider's own id for the slot. Unique, and
            the key every reconciliation write is matched on.
        course_id: Local course the tee time belongs to.
        date: Tee time start as a naive UTC datetime.
        provider_date: The provider-native timestamp string, kept verbatim
            because providers disagree on formats and offsets.
        time: Military time (1430 for 2:30pm).
        number_of_holes: 9 or 18.
        max_players_per_booking: Largest group the provider accepts.
        available_first_hand_spots: Primary-market inventory. Written only
            by the indexer.
        available_second_hand_spots: Resale inventory. Never written by
            the indexer after insert.
        green_fee_per_player, cart_fee_per_player, green_fee_tax_per_player,
        cart_fee_tax_per_player: Integer cents.
    """

    __tablename__ = "tee_times"

    id = Column(String(36), primary_key=True)
    provider_tee_time_id = Column(String(100), unique=True, nullable=False, index=True)
    course_id = Column(String(36), nullable=False, index=True)
    date = Column(DateTime, nullable=False)
    provider_date = Column(String(50), nullable=False, index=True)
    time = Column(Integer, nullable=False)
    number_of_holes = Column(Integer, default=18)
    max_players_per_booking = Column(Integer, default=4)
    available_first_hand_spots = Column(Integer, default=0)
    available_second_hand_spots = Column(Integer, default=0)
    green_fee_per_player = Column(Integer, default=0)
    cart_fee_per_player = Column(Integer, default=0)
    green_fee_tax_per_player = Column(Integer, default=0)
    cart_fee_tax_per_player = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BookingSlotRecord(Base):
    """
    Database model for one player position on a booking.

    Columns:
        booking_id: Local booking this slot belongs to.
        slotnumber: Provider-specific slot key (format differs per provider).
        name: Player name; "Guest" for non-purchasing players.
        customer_id: Provider customer id, set only on the purchaser's slot.
        slot_position: 1-indexed position; position 1 is the purchaser.
    """

    __tablename__ = "booking_slots"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), nullable=False, index=True)
    slotnumber = Column(String(100), nullable=False)
    name = Column(String(200), default="")
    customer_id = Column(String(100), default="")
    is_active = Column(Boolean, default=True)
    slot_position = Column(Integer, nullable=False)
    provider_course_membership_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ProviderAuthTokenRecord(Base):
    """
    Audit trail of tokens issued by providers.

    The cache is the primary token store; these rows are written on every
    fetch and read back only when a refresh token is missing from the cache.
    """

    __tablename__ = "provider_auth_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(50), nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ProviderCourseLinkRecord(Base):
    """
    Connects a local course to its provider and the provider's ids for it.

    Columns:
        provider_id: Provider tag ("fore-up", "club-prophet", "light-speed",
            "quick-18").
        provider_course_configuration: JSON blob of endpoints and credentials,
            parsed by the provider adapter at construction.
        timezone: Course timezone, used for providers that report local times.
        last_indexed_at: When indexing last ran for this course; the oldest
            is indexed next.
        day_last_indexed: Map of ISO date to the last time that day was
            indexed, driving the per-day backoff schedule.
    """

    __tablename__ = "provider_course_links"

    id = Column(String(36), primary_key=True)
    course_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String(50), nullable=False)
    provider_course_id = Column(String(100), nullable=False)
    provider_tee_sheet_id = Column(String(100), default="")
    provider_course_configuration = Column(Text, default="{}")
    timezone = Column(String(50), default="America/Chicago")
    last_indexed_at = Column(DateTime, nullable=True, index=True)
    day_last_indexed = Column(JSON, default=dict)


class UserProviderCourseLinkRecord(Base):
    """Provider customer created for a user at a course, so it is created once."""

    __tablename__ = "user_provider_course_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(String(50), nullable=False)
    course_id = Column(String(36), nullable=False)
    customer_id = Column(String(100), nullable=False)
    provider_account_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ErrorLogRecord(Base):
    """Durable record of a provider or indexing failure."""

    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), default="")
    url = Column(String(200), nullable=False)
    user_agent = Column(String(200), default="")
    message = Column(String(200), nullable=False)
    stack_trace = Column(Text, default="")
    additional_details_json = Column(Text, default="{}")
    created_at = Column(DateTime, default=datetime.utcnow)


engine = create_async_engine(
    settings.database_url.replace("sqlite://", "sqlite+aiosqlite://")
    if settings.database_url.startswith("sqlite://")
    else settings.database_url,
    echo=False,
)

AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
